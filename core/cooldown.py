"""
Adaptive pacing for the primary fishing action.

The server never announces the real cooldown up front; it only complains
when we fish too early.  :class:`CooldownEstimator` therefore starts at the
configured base cooldown, jumps up to whatever the server reports on a
violation and slowly creeps back down after long runs of clean casts.
"""

import logging
import random
from typing import Optional

logger = logging.getLogger(__name__)


class CooldownEstimator:
    """Estimate the server-side fishing cooldown and produce sleep delays.

    ``next_delay() = estimated_cooldown + consecutive_hits * HIT_PENALTY
    + U(JITTER_MIN, JITTER_MAX)``

    Attributes:
        HIT_PENALTY: Seconds added per consecutive cooldown violation.
        JITTER_MIN / JITTER_MAX: Bounds of the human-like uniform jitter.
        DECAY_STEP: Seconds removed from the estimate after a clean streak.
        DECAY_STREAK: Consecutive successes needed for one decay step.
    """

    HIT_PENALTY = 0.5
    JITTER_MIN = 0.1
    JITTER_MAX = 0.8
    DECAY_STEP = 0.05
    DECAY_STREAK = 20

    def __init__(
        self,
        base_cooldown: float,
        rng: Optional[random.Random] = None,
        **overrides: float,
    ):
        if base_cooldown <= 0:
            raise ValueError("base_cooldown must be positive")
        for name, value in overrides.items():
            if not name.isupper() or not hasattr(type(self), name):
                raise TypeError(f"Unknown cooldown constant: {name}")
            setattr(self, name, value)

        self.base_cooldown = float(base_cooldown)
        self.estimated_cooldown = float(base_cooldown)
        self.consecutive_hits = 0
        self.success_streak = 0
        self._rng = rng or random.Random()

    def next_delay(self) -> float:
        """Seconds to sleep before the next cast."""
        penalty = self.consecutive_hits * self.HIT_PENALTY
        jitter = self._rng.uniform(self.JITTER_MIN, self.JITTER_MAX)
        return self.estimated_cooldown + penalty + jitter

    def report_hit(self, wait_time: float, total_cooldown: float) -> None:
        """The server rejected a cast because the cooldown had not elapsed."""
        self.consecutive_hits += 1
        self.success_streak = 0

        if total_cooldown > self.estimated_cooldown:
            logger.info(
                f"⏱️ Cooldown estimate raised {self.estimated_cooldown:.2f}s -> {total_cooldown:.2f}s"
            )
            self.estimated_cooldown = float(total_cooldown)

        logger.warning(
            f"Cooldown hit (waited too little by {wait_time:.2f}s), consecutive: {self.consecutive_hits}"
        )

    def report_success(self) -> None:
        """A cast went through; try a faster pace after a long streak."""
        self.success_streak += 1
        self.consecutive_hits = 0

        if self.success_streak >= self.DECAY_STREAK:
            self.success_streak = 0
            if self.estimated_cooldown > self.base_cooldown:
                self.estimated_cooldown = max(
                    self.base_cooldown, self.estimated_cooldown - self.DECAY_STEP
                )
                logger.debug(f"Cooldown estimate decayed to {self.estimated_cooldown:.2f}s")
