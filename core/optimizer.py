"""
Income-rate model and upgrade ranking.

The optimizer estimates gold per second for a loadout (rod, boat, biome) and
ranks every single-step change by how long it takes to pay for itself:

    rate = (fish_per_cast * catch_rate * (1 + catch_bonus))
           * (avg_value_per_fish * (1 + sell_bonus)) / effective_cooldown

    effective_cooldown = max(2.0, base_cooldown + biome_penalty
                              - boat_reduction - base_cooldown * haste_bonus)

``avg_value_per_fish`` comes from :class:`BiomeStats`, the running totals of
what was actually caught in each biome.  Until a biome has observations a
fixed prior is used.
"""

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, List, Optional

from game.game_data import BIOMES, BOATS, RODS, Biome, Boat, Rod
from game.profile import Bonuses

logger = logging.getLogger(__name__)


class ActionType(Enum):
    """Kinds of recommended moves."""
    BUY_ROD = "buy_rod"
    BUY_BOAT = "buy_boat"
    TRAVEL = "travel"
    RISK_BRIDGE = "risk_bridge"


# Tie-break at equal roi: free moves first, then the bridge, then purchases.
_TIE_BREAK = {
    ActionType.TRAVEL: 0,
    ActionType.RISK_BRIDGE: 1,
    ActionType.BUY_ROD: 2,
    ActionType.BUY_BOAT: 2,
}


@dataclass
class BiomeStats:
    """Cumulative catch statistics for one biome."""
    total_catches: int = 0
    total_gold: int = 0
    total_xp: int = 0
    avg_gold_per_fish: float = 0.0
    avg_xp_per_fish: float = 0.0

    def record(self, gold: int, xp: int, count: int) -> None:
        """Add one catch and refresh the cumulative means."""
        self.total_catches += count
        self.total_gold += gold
        self.total_xp += xp
        if self.total_catches > 0:
            self.avg_gold_per_fish = self.total_gold / self.total_catches
            self.avg_xp_per_fish = self.total_xp / self.total_catches

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Recommendation:
    """A ranked move.

    For ``RISK_BRIDGE`` the ``amount`` is the stake (the funding shortfall)
    and ``target`` names the purchase it would unlock.
    """
    action: ActionType
    target: str
    cost: int
    roi_seconds: float
    amount: Optional[int] = None

    @property
    def is_purchase(self) -> bool:
        return self.action in (ActionType.BUY_ROD, ActionType.BUY_BOAT)


class ActionOptimizer:
    """Rank rod, boat and travel moves by payback time."""

    VALUE_PRIOR = 15.0
    MIN_EFFECTIVE_COOLDOWN = 2.0
    # Grinds longer than this (seconds) make staking the shortfall worthwhile
    RISK_BRIDGE_THRESHOLD = 4 * 3600.0

    def __init__(
        self,
        biome_stats: Optional[Dict[str, BiomeStats]] = None,
        bonuses: Optional[Bonuses] = None,
    ):
        self.biome_stats: Dict[str, BiomeStats] = dict(biome_stats or {})
        self.bonuses = bonuses or Bonuses()

    def stats_for(self, biome: str) -> BiomeStats:
        return self.biome_stats.setdefault(biome, BiomeStats())

    def record_catch(self, biome: str, gold: int, xp: int, count: int) -> BiomeStats:
        stats = self.stats_for(biome)
        stats.record(gold, xp, count)
        return stats

    def avg_value_per_fish(self, biome: str) -> float:
        stats = self.biome_stats.get(biome)
        # Catches of unpriced fish alone say nothing about value
        if stats is None or stats.avg_gold_per_fish <= 0:
            return self.VALUE_PRIOR
        return stats.avg_gold_per_fish

    def effective_cooldown(self, boat: Optional[Boat], biome: Biome,
                           bonuses: Optional[Bonuses] = None) -> float:
        bonuses = bonuses or self.bonuses
        boat_reduction = boat.cooldown_reduction if boat else 0.0
        cooldown = (
            biome.base_cooldown
            + biome.cooldown_penalty
            - boat_reduction
            - biome.base_cooldown * bonuses.haste_bonus
        )
        return max(self.MIN_EFFECTIVE_COOLDOWN, cooldown)

    def income_rate(self, rod: Rod, boat: Optional[Boat], biome: Biome,
                    bonuses: Optional[Bonuses] = None) -> float:
        """Expected gold per second for the given loadout."""
        bonuses = bonuses or self.bonuses
        fish_per_cast = rod.expected_fish_per_cast * biome.catch_rate * (1 + bonuses.catch_bonus)
        value_per_fish = self.avg_value_per_fish(biome.name) * (1 + bonuses.sell_bonus)
        return fish_per_cast * value_per_fish / self.effective_cooldown(boat, biome, bonuses)

    def _risk_bridge(self, balance: int, cost: int, rate: float) -> Optional[int]:
        """Shortfall worth staking on an even-odds bet, if any."""
        if rate <= 0 or balance >= cost:
            return None
        gap = cost - balance
        if gap / rate > self.RISK_BRIDGE_THRESHOLD and gap <= balance:
            return gap
        return None

    def recommend(
        self,
        rod: Rod,
        boat: Optional[Boat],
        biome: Biome,
        balance: int,
        bonuses: Optional[Bonuses] = None,
    ) -> List[Recommendation]:
        """Rank every profitable single-step change, best first.

        Args:
            rod: Rod currently equipped.
            boat: Most expensive boat owned, ``None`` without a boat.
            biome: Current biome.
            balance: Gold available.
            bonuses: Charm bonuses; defaults to the optimizer's own.

        Returns:
            Recommendations sorted by ascending ``roi_seconds``.
        """
        bonuses = bonuses or self.bonuses
        current = self.income_rate(rod, boat, biome, bonuses)
        boat_price = boat.price if boat else 0
        recommendations: List[Recommendation] = []

        def consider(action: ActionType, target: str, cost: int, new_rate: float) -> None:
            if new_rate <= current:
                return
            roi = cost / (new_rate - current)
            recommendations.append(Recommendation(action, target, cost, roi))
            stake = self._risk_bridge(balance, cost, current)
            if stake is not None:
                recommendations.append(
                    Recommendation(ActionType.RISK_BRIDGE, target, stake, 0.0, amount=stake)
                )

        for candidate in RODS:
            if candidate.price > rod.price:
                consider(ActionType.BUY_ROD, candidate.name, candidate.price,
                         self.income_rate(candidate, boat, biome, bonuses))

        for candidate in BOATS:
            if candidate.price > boat_price:
                consider(ActionType.BUY_BOAT, candidate.name, candidate.price,
                         self.income_rate(rod, candidate, biome, bonuses))

        for candidate in BIOMES:
            if candidate.name != biome.name:
                new_rate = self.income_rate(rod, boat, candidate, bonuses)
                if new_rate > current:
                    recommendations.append(
                        Recommendation(ActionType.TRAVEL, candidate.name, 0, 0.0)
                    )

        recommendations.sort(key=lambda r: (r.roi_seconds, _TIE_BREAK[r.action]))
        if recommendations:
            best = recommendations[0]
            logger.debug(
                f"Best move: {best.action.value} {best.target} "
                f"(cost {best.cost}, roi {best.roi_seconds:.1f}s, rate {current:.3f}/s)"
            )
        return recommendations
