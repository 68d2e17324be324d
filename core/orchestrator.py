"""
Bot orchestration engine.

:class:`BotOrchestrator` owns the :class:`BotState` machine and drives the
account one cycle at a time:

0. Drain every queued gateway event in order and apply what it says
   (catches, cooldown warnings, profile snapshots, a full inventory,
   captcha prompts).
1. A pending captcha preempts everything: the bot waits in
   ``AWAITING_CAPTCHA`` until the prompt is cleared.
2. Catch and cooldown signals feed the :class:`CooldownEstimator` and the
   per-biome :class:`BiomeStats` (checkpointed every 50 catches).
3. The :class:`ActionOptimizer` ranks upgrades and moves; the best one the
   autonomy policy allows is executed when affordable and when the same
   kind of action has not run in the last 15 seconds.  Travel is
   fire-and-continue; purchases go through ``SHOPPING``.
4. A full inventory is sold (``SELLING``).
5. Otherwise the paced primary action, ``/fish``, is submitted.
6. Sleep :meth:`CooldownEstimator.next_delay`.
7. Tick the :class:`TaskScheduler` once.

Submission failures are logged, followed by a short pause, and retried only
by the next natural cycle.  Repeated authorization failures raise an
operator alert in :class:`~core.monitoring.BotStatus` but never stop the
loop.

Key exports:
    BotState: Orchestrator state enum.
    BotOrchestrator: The cycle driver.
"""

import asyncio
import logging
import time
from collections import deque
from enum import Enum
from typing import Any, Callable, Dict, Optional

from core.config import BotSettings
from core.cooldown import CooldownEstimator
from core.errors import ActionSubmissionError, CommandNotFoundError, ErrorType, RateLimitedError
from core.monitoring import BotStatus, StatusDashboard
from core.optimizer import ActionOptimizer, ActionType, Recommendation
from core.scheduler import ScheduledTask, TaskKind, TaskScheduler
from core.storage import Storage
from game.game_data import DEFAULT_BIOME, DEFAULT_ROD, find_biome, find_boat, find_rod, fish_price
from game.parser import CatchEvent, CooldownEvent, ProfileUpdate, parse_message
from game.profile import ProfileState
from gateway.http import ActionClient, CommandDescriptor
from gateway.protocol import GatewayEnvelope

logger = logging.getLogger(__name__)

MESSAGE_EVENTS = ("MESSAGE_CREATE", "MESSAGE_UPDATE")


class BotState(Enum):
    IDLE = "idle"
    PRIMARY_ACTION = "primary_action"
    AWAITING_CAPTCHA = "awaiting_captcha"
    SELLING = "selling"
    SHOPPING = "shopping"


class BotOrchestrator:
    """
    Drive one account: event handling, pacing, upgrades and maintenance.

    Collaborators are injected so each can be replaced in tests:

    * ``actions`` -- :class:`~gateway.http.ActionClient` for submissions;
    * ``events`` -- queue of Dispatch envelopes filled by the gateway;
    * ``profile`` -- shared :class:`~game.profile.ProfileState`;
    * ``storage`` -- optional :class:`~core.storage.Storage`.
    """

    ACTION_REPEAT_WINDOW = 15.0
    CHECKPOINT_EVERY = 50
    CAPTCHA_POLL_INTERVAL = 2.0
    STATUS_LOG_INTERVAL = 300.0
    SEEN_MESSAGE_LIMIT = 256

    # Slash commands used for each kind of action.
    COMMANDS: Dict[str, str] = {
        "fish": "fish",
        "sell": "sell",
        "buy": "buy",
        "travel": "biome",
        "risk_bridge": "coinflip",
    }

    def __init__(
        self,
        settings: BotSettings,
        actions: ActionClient,
        events: asyncio.Queue,
        profile: Optional[ProfileState] = None,
        estimator: Optional[CooldownEstimator] = None,
        optimizer: Optional[ActionOptimizer] = None,
        scheduler: Optional[TaskScheduler] = None,
        storage: Optional[Storage] = None,
        status: Optional[BotStatus] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.actions = actions
        self.events = events
        self.profile = profile or ProfileState()
        self.estimator = estimator or CooldownEstimator(settings.user_cooldown)
        self.optimizer = optimizer or ActionOptimizer()
        self.scheduler = scheduler if scheduler is not None else TaskScheduler(self.run_task, clock=clock)
        self.storage = storage
        self.status = status or BotStatus()
        self._clock = clock

        self.state = BotState.IDLE
        self.current_boat: Optional[str] = settings.current_boat
        self.inventory_full = False
        self._commands: Dict[str, CommandDescriptor] = {}
        self._last_action_at: Dict[ActionType, float] = {}
        self._last_status_log = 0.0
        # Ids of messages whose catch or cooldown was already applied
        self._seen_messages: deque = deque(maxlen=self.SEEN_MESSAGE_LIMIT)
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load_learned_stats(self) -> None:
        """Seed the optimizer with the catch statistics saved last run."""
        if self.storage is None:
            return
        for biome, stats in self.storage.load_biome_stats().items():
            self.optimizer.biome_stats[biome] = stats

    async def run(self) -> None:
        """Main loop; returns after :meth:`stop`."""
        logger.info("🎣 Orchestrator started.")
        self.load_learned_stats()
        if self.settings.warmup_seconds > 0:
            logger.info(f"Warming up for {self.settings.warmup_seconds:.0f}s...")
            await self._sleep(self.settings.warmup_seconds)

        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Cycle crashed: {e}", exc_info=True)
                self.status.last_error = str(e)
                await self._sleep(self.settings.failure_pause_seconds)
            self._maybe_log_status()

        self.state = BotState.IDLE
        self._sync_status()
        self.checkpoint_all()
        logger.info("Orchestrator stopped.")

    def stop(self) -> None:
        self._stop_event.set()

    async def _sleep(self, seconds: float) -> None:
        """Sleep that ends early on :meth:`stop`."""
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run_cycle(self) -> None:
        """One full cycle: act, pace, then tick the scheduler."""
        await self.step()
        if self.state == BotState.AWAITING_CAPTCHA:
            await self._sleep(self.CAPTCHA_POLL_INTERVAL)
            return

        await self._sleep(self.estimator.next_delay())
        await self.scheduler.tick()

    # ------------------------------------------------------------------
    # Decision step
    # ------------------------------------------------------------------

    async def step(self) -> BotState:
        """Apply pending events and perform at most one paced action."""
        self.drain_events()

        if self.profile.captcha_detected:
            if self.state != BotState.AWAITING_CAPTCHA:
                logger.warning("🛑 Captcha detected; all actions paused until it is solved.")
            self.state = BotState.AWAITING_CAPTCHA
            self._sync_status()
            return self.state

        if self.state == BotState.AWAITING_CAPTCHA:
            logger.info("✅ Captcha cleared; resuming.")
        self.state = BotState.PRIMARY_ACTION

        try:
            recommendation = self.choose_recommendation()
            if recommendation is not None:
                consumed = await self.execute_recommendation(recommendation)
                if consumed:
                    return self.state

            if self.inventory_full:
                await self.sell_inventory()
            else:
                await self.fish()
        except ActionSubmissionError as e:
            await self._handle_failure(e)
        finally:
            if self.state != BotState.AWAITING_CAPTCHA:
                self.state = BotState.PRIMARY_ACTION
            self._sync_status()
        return self.state

    def choose_recommendation(self) -> Optional[Recommendation]:
        """Best optimizer move the policy allows, if it can run now."""
        snapshot = self.profile.snapshot()
        rod = find_rod(snapshot.rod_name) or DEFAULT_ROD
        boat = find_boat(self.current_boat)
        biome = find_biome(snapshot.biome) or DEFAULT_BIOME

        ranked = [
            r for r in self.optimizer.recommend(
                rod, boat, biome, snapshot.balance, bonuses=snapshot.bonuses,
            )
            if self._policy_allows(r)
        ]
        if not ranked:
            return None

        best = ranked[0]
        self.status.last_recommendation = (
            f"{best.action.value} {best.target} (cost {best.cost:,}, roi {best.roi_seconds:.0f}s)"
        )
        if best.cost > snapshot.balance:
            return None
        last = self._last_action_at.get(best.action)
        if last is not None and self._clock() - last < self.ACTION_REPEAT_WINDOW:
            return None
        return best

    def _policy_allows(self, recommendation: Recommendation) -> bool:
        if recommendation.is_purchase:
            return self.settings.auto_buy
        if recommendation.action == ActionType.TRAVEL:
            return self.settings.auto_travel
        return self.settings.allow_risk_bridge

    async def execute_recommendation(self, rec: Recommendation) -> bool:
        """Run a recommendation.

        Returns:
            ``True`` when the action used up this cycle (purchases and the
            risk bridge); travel returns ``False`` so the cycle continues.
        """
        self._last_action_at[rec.action] = self._clock()

        if rec.action == ActionType.TRAVEL:
            logger.info(f"🧭 Travelling to {rec.target}")
            await self.submit("travel", {"biome": rec.target})
            self.profile.set_biome(rec.target)
            self.status.travels += 1
            return False

        self.state = BotState.SHOPPING
        if rec.action == ActionType.RISK_BRIDGE:
            logger.info(f"🎲 Staking {rec.amount:,} to bridge the gap to {rec.target}")
            await self.submit("risk_bridge", {"amount": rec.amount, "side": "heads"})
            # Outcome is unknown until the next profile; assume the stake is gone
            self.profile.spend(rec.amount)
            self.scheduler.schedule_once("profile:after-bridge", "profile")
            return True

        logger.info(f"🛒 Buying {rec.target} for {rec.cost:,} (pays back in {rec.roi_seconds:.0f}s)")
        await self.submit("buy", {"item": rec.target.lower()})
        if rec.action == ActionType.BUY_ROD:
            self.profile.update(rod_name=rec.target)
        else:
            self.current_boat = rec.target
        self.profile.spend(rec.cost)
        self.status.purchases += 1
        return True

    async def sell_inventory(self) -> None:
        self.state = BotState.SELLING
        logger.info("💰 Inventory full; selling.")
        await self.submit("sell", {"amount": "all"})
        self.inventory_full = False
        self.status.sells += 1

    async def fish(self) -> None:
        await self.submit("fish")
        self.status.casts += 1

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def _descriptor(self, name: str) -> CommandDescriptor:
        descriptor = self._commands.get(name)
        if descriptor is None:
            descriptor = await self.actions.lookup_command(self.settings.guild_id, name)
            if descriptor is None:
                raise CommandNotFoundError(name)
            self._commands[name] = descriptor
        return descriptor

    async def submit(self, action: str, options: Optional[Dict[str, Any]] = None) -> None:
        """Submit the slash command mapped to *action* (or a raw command name)."""
        name = self.COMMANDS.get(action, action)
        descriptor = await self._descriptor(name)
        try:
            await self.actions.submit_command(
                self.settings.guild_id, self.settings.channel_id, descriptor, options,
            )
        except ActionSubmissionError as e:
            if e.error_type == ErrorType.NOT_FOUND:
                self._commands.pop(name, None)
            raise
        self._on_submission_success()

    async def run_task(self, task: ScheduledTask) -> None:
        """Executor handed to the :class:`TaskScheduler`."""
        try:
            await self.submit(task.command, task.options or None)
        except ActionSubmissionError as e:
            self._record_failure(e)
            raise
        self.status.scheduled_runs += 1
        if task.kind == TaskKind.SELL:
            self.inventory_full = False

    def _on_submission_success(self) -> None:
        self.status.consecutive_auth_failures = 0
        if self.status.operator_alert:
            logger.info("Authorization recovered; clearing operator alert.")
        self.status.operator_alert = None

    def _record_failure(self, error: ActionSubmissionError) -> None:
        self.status.submission_failures += 1
        self.status.last_error = str(error)
        if error.error_type != ErrorType.AUTH:
            return
        self.status.consecutive_auth_failures += 1
        count = self.status.consecutive_auth_failures
        if count >= self.settings.operator_alert_threshold and not self.status.operator_alert:
            self.status.operator_alert = (
                f"{count} consecutive authorization failures; check the account token"
            )
            logger.critical(f"🚨 {self.status.operator_alert}")

    async def _handle_failure(self, error: ActionSubmissionError) -> None:
        self._record_failure(error)
        logger.error(f"Action failed ({error.error_type.value}): {error}")
        pause = self.settings.failure_pause_seconds
        if isinstance(error, RateLimitedError):
            pause = max(pause, error.retry_after)
        await self._sleep(pause)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def drain_events(self) -> int:
        """Apply every queued event in arrival order."""
        handled = 0
        while True:
            try:
                envelope = self.events.get_nowait()
            except asyncio.QueueEmpty:
                break
            try:
                self.handle_event(envelope)
            except Exception as e:
                logger.error(f"Failed to handle {envelope.event_name} event: {e}", exc_info=True)
            handled += 1
        return handled

    def _is_game_message(self, data: Dict[str, Any]) -> bool:
        channel = data.get("channel_id")
        if channel is not None and str(channel) != str(self.settings.channel_id):
            return False
        author = data.get("author")
        if isinstance(author, dict) and "id" in author:
            return str(author["id"]) == self.settings.game_application_id
        return True

    def handle_event(self, envelope: GatewayEnvelope) -> None:
        if envelope.event_name not in MESSAGE_EVENTS or not isinstance(envelope.payload, dict):
            return
        if not self._is_game_message(envelope.payload):
            return

        message = parse_message(envelope.payload)
        if message.captcha_cleared:
            self.profile.clear_captcha()
        elif message.captcha:
            if not self.profile.captcha_detected:
                self.status.captcha_prompts += 1
                logger.warning("Captcha prompt received.")
            self.profile.flag_captcha()

        if message.profile is not None:
            self._apply_profile(message.profile)
        if message.charms is not None:
            self.profile.update(bonuses=message.charms)
            logger.info(f"Charm bonuses updated: {message.charms}")

        if message.catch is not None or message.cooldown is not None:
            # Edits of an already applied message must not count twice
            if message.message_id is not None and message.message_id in self._seen_messages:
                logger.debug(f"Message {message.message_id} already applied; skipping")
            else:
                if message.message_id is not None:
                    self._seen_messages.append(message.message_id)
                if message.catch is not None:
                    self._apply_catch(message.catch)
                if message.cooldown is not None:
                    self._apply_cooldown(message.cooldown)

        if message.inventory_full:
            self.inventory_full = True

    def _apply_catch(self, catch: CatchEvent) -> None:
        self.estimator.report_success()
        count = catch.total_fish
        if count <= 0:
            return

        biome = self.profile.snapshot().biome
        gold = sum(fish_price(name) * qty for name, qty in catch.fish)
        stats = self.optimizer.stats_for(biome)
        before = stats.total_catches
        stats.record(gold, catch.xp, count)

        self.status.fish_caught += count
        self.status.gold_observed += gold
        self.status.xp_observed += catch.xp
        logger.info(f"🐟 Caught {count} fish in {biome}: {gold} gold, {catch.xp} XP")

        if self.storage is not None:
            for name, qty in catch.fish:
                self.storage.log_catch(name, qty, catch.xp, biome, fish_price(name) * qty)

        if before // self.CHECKPOINT_EVERY != stats.total_catches // self.CHECKPOINT_EVERY:
            self.checkpoint(biome)

    def _apply_cooldown(self, event: CooldownEvent) -> None:
        self.estimator.report_hit(event.wait_time, event.total_cooldown)
        self.status.cooldown_hits += 1
        if self.storage is not None:
            self.storage.log_cooldown(event.wait_time, event.total_cooldown)

    def _apply_profile(self, update: ProfileUpdate) -> None:
        snapshot = self.profile.update(
            balance=update.balance, level=update.level,
            biome=update.biome, rod_name=update.rod_name,
        )
        logger.debug(f"Profile updated: {snapshot}")
        if self.storage is not None and update.balance is not None:
            self.storage.log_snapshot(snapshot.level, snapshot.balance, snapshot.biome, snapshot.rod_name)

    # ------------------------------------------------------------------
    # Persistence and status
    # ------------------------------------------------------------------

    def checkpoint(self, biome: str) -> None:
        if self.storage is None:
            return
        stats = self.optimizer.biome_stats.get(biome)
        if stats is None:
            return
        try:
            self.storage.save_biome_stats(biome, stats)
        except Exception as e:
            logger.error(f"Failed to checkpoint {biome} stats: {e}")

    def checkpoint_all(self) -> None:
        for biome in list(self.optimizer.biome_stats):
            self.checkpoint(biome)

    def _sync_status(self) -> None:
        snapshot = self.profile.snapshot()
        self.status.state = self.state.value
        self.status.balance = snapshot.balance
        self.status.biome = snapshot.biome
        self.status.rod_name = snapshot.rod_name
        self.status.estimated_cooldown = self.estimator.estimated_cooldown

    def _maybe_log_status(self) -> None:
        now = self._clock()
        if now - self._last_status_log >= self.STATUS_LOG_INTERVAL:
            self._last_status_log = now
            logger.info(StatusDashboard.status_line(self.status))
