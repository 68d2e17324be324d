"""
Maintenance task scheduler.

Low-frequency game actions (daily reward, selling, clan claim, boosts) run
on their own cadence next to the fishing loop.  :class:`TaskScheduler`
keeps them in a min-heap ordered by ``next_run`` and is driven by the
orchestrator, which calls :meth:`TaskScheduler.tick` once per cycle.

At most one task runs per tick, and only when a randomised global cooldown
has passed since the previous one, so maintenance traffic never piles up on
top of the primary action.
"""

import heapq
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.config import BotSettings
from core.errors import ActionSubmissionError

logger = logging.getLogger(__name__)

DAILY_INTERVAL = 24 * 60 * 60
CLAIM_INTERVAL = 4 * 60 * 60
DAILY_FIRST_RUN_DELAY = 60.0
BOOST_FIRST_RUN_DELAY = 30.0
PROFILE_FIRST_RUN_DELAY = 10.0
CHARMS_FIRST_RUN_DELAY = 20.0


class TaskKind(Enum):
    """Kinds of maintenance tasks."""
    DAILY = "daily"
    SELL = "sell"
    PERIODIC_BOOST = "periodic_boost"
    CUSTOM = "custom"


@dataclass(order=True)
class ScheduledTask:
    """A maintenance action waiting in the scheduler heap.

    Tasks order by ``next_run`` only (earliest first).

    Attributes:
        next_run: Monotonic timestamp when the task becomes due.
        name: Label used in logs.
        kind: :class:`TaskKind`.
        command: Slash command name to submit.
        options: Command options as ``{name: value}``.
        interval: Seconds between runs, ``None`` for a one-shot task.
        label: Boost label for ``PERIODIC_BOOST`` tasks.
    """

    next_run: float
    name: str = field(compare=False)
    kind: TaskKind = field(compare=False, default=TaskKind.CUSTOM)
    command: str = field(compare=False, default="")
    options: Dict[str, Any] = field(compare=False, default_factory=dict)
    interval: Optional[float] = field(compare=False, default=None)
    label: Optional[str] = field(compare=False, default=None)

    @property
    def repeating(self) -> bool:
        return self.interval is not None and self.interval > 0


TaskExecutor = Callable[[ScheduledTask], Awaitable[None]]


def build_default_tasks(settings: BotSettings, now: float) -> List[ScheduledTask]:
    """Create the task catalogue enabled by the automation settings."""
    tasks: List[ScheduledTask] = []

    if settings.auto_daily:
        tasks.append(ScheduledTask(
            next_run=now + DAILY_FIRST_RUN_DELAY,
            name="daily", kind=TaskKind.DAILY, command="daily",
            interval=DAILY_INTERVAL,
        ))

    if settings.auto_sell:
        interval = settings.sell_interval_minutes * 60
        tasks.append(ScheduledTask(
            next_run=now + interval,
            name="sell", kind=TaskKind.SELL, command="sell",
            options={"amount": "all"}, interval=interval,
        ))

    if settings.auto_claim:
        tasks.append(ScheduledTask(
            next_run=now + CLAIM_INTERVAL,
            name="claim", kind=TaskKind.CUSTOM, command="claim",
            interval=CLAIM_INTERVAL,
        ))

    if settings.profile_refresh_minutes > 0:
        tasks.append(ScheduledTask(
            next_run=now + PROFILE_FIRST_RUN_DELAY,
            name="profile", kind=TaskKind.CUSTOM, command="profile",
            interval=settings.profile_refresh_minutes * 60,
        ))
        tasks.append(ScheduledTask(
            next_run=now + CHARMS_FIRST_RUN_DELAY,
            name="charms", kind=TaskKind.CUSTOM, command="charms",
            interval=settings.profile_refresh_minutes * 60,
        ))

    if settings.boosts_length > 0:
        labels = []
        if settings.more_fish:
            labels.append("fish")
        if settings.more_treasures:
            labels.append("treasure")
        for label in labels:
            tasks.append(ScheduledTask(
                next_run=now + BOOST_FIRST_RUN_DELAY,
                name=f"boost:{label}", kind=TaskKind.PERIODIC_BOOST,
                command="buy", options={"item": f"{label}{settings.boosts_length}m"},
                interval=settings.boosts_length * 60, label=label,
            ))

    for extra in settings.extra_tasks:
        command = extra.get("command")
        if not command:
            logger.warning(f"Ignoring extra task without a command: {extra}")
            continue
        interval = extra.get("interval_minutes")
        tasks.append(ScheduledTask(
            next_run=now + float(extra.get("delay_seconds", 0)),
            name=extra.get("name", command), kind=TaskKind.CUSTOM,
            command=command, options=dict(extra.get("options") or {}),
            interval=float(interval) * 60 if interval else None,
        ))

    return tasks


class TaskScheduler:
    """Run due maintenance tasks one at a time, spaced by a global cooldown."""

    GLOBAL_COOLDOWN_MIN = 3.0
    GLOBAL_COOLDOWN_MAX = 6.0

    def __init__(
        self,
        executor: TaskExecutor,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self._executor = executor
        self._clock = clock
        self._rng = rng or random.Random()
        self._queue: List[ScheduledTask] = []
        self.global_cooldown = self._sample_cooldown()
        self.last_action: Optional[float] = None

    def _sample_cooldown(self) -> float:
        return self._rng.uniform(self.GLOBAL_COOLDOWN_MIN, self.GLOBAL_COOLDOWN_MAX)

    def schedule(self, task: ScheduledTask) -> None:
        heapq.heappush(self._queue, task)
        logger.debug(f"Scheduled {task.name} (next run in {task.next_run - self._clock():.0f}s)")

    def schedule_once(
        self,
        name: str,
        command: str,
        options: Optional[Dict[str, Any]] = None,
        delay: float = 0.0,
    ) -> ScheduledTask:
        """Enqueue a one-shot task that runs after *delay* seconds."""
        task = ScheduledTask(
            next_run=self._clock() + delay,
            name=name, kind=TaskKind.CUSTOM, command=command,
            options=dict(options or {}),
        )
        self.schedule(task)
        return task

    def load_defaults(self, settings: BotSettings) -> int:
        tasks = build_default_tasks(settings, self._clock())
        for task in tasks:
            self.schedule(task)
        logger.info(f"📅 Scheduler loaded {len(tasks)} maintenance task(s): {[t.name for t in tasks]}")
        return len(tasks)

    def pending(self) -> List[ScheduledTask]:
        """Queued tasks, earliest first."""
        return sorted(self._queue)

    def __len__(self) -> int:
        return len(self._queue)

    def cooldown_remaining(self, now: Optional[float] = None) -> float:
        if self.last_action is None:
            return 0.0
        now = self._clock() if now is None else now
        return max(0.0, self.global_cooldown - (now - self.last_action))

    async def tick(self) -> Optional[ScheduledTask]:
        """Run at most one due task.

        Returns:
            The task that was executed (successfully or not), or ``None``.
        """
        now = self._clock()
        if self.cooldown_remaining(now) > 0:
            return None
        if not self._queue or self._queue[0].next_run > now:
            return None

        task = heapq.heappop(self._queue)
        logger.info(f"🔧 Running scheduled task: {task.name}")
        try:
            await self._executor(task)
        except ActionSubmissionError as e:
            logger.error(f"Scheduled task {task.name} failed ({e.error_type.value}): {e}")
        except Exception as e:
            logger.error(f"Scheduled task {task.name} crashed: {e}", exc_info=True)

        finished = self._clock()
        self.last_action = finished
        self.global_cooldown = self._sample_cooldown()

        if task.repeating:
            task.next_run = finished + task.interval
            heapq.heappush(self._queue, task)
        return task
