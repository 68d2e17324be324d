"""
Tests for the adaptive cooldown estimator.
"""

import random

import pytest

from core.cooldown import CooldownEstimator


@pytest.fixture
def estimator():
    return CooldownEstimator(3.5, rng=random.Random(42))


class TestCooldownEstimator:

    def test_starts_at_base(self, estimator):
        """A fresh estimator trusts the configured base cooldown."""
        assert estimator.estimated_cooldown == 3.5
        assert estimator.consecutive_hits == 0
        assert estimator.success_streak == 0

    def test_rejects_non_positive_base(self):
        with pytest.raises(ValueError):
            CooldownEstimator(0)

    def test_next_delay_bounds(self, estimator):
        """Delay is estimate plus jitter in [0.1, 0.8]."""
        for _ in range(200):
            delay = estimator.next_delay()
            assert 3.5 + 0.1 <= delay <= 3.5 + 0.8

    def test_next_delay_includes_hit_penalty(self, estimator):
        estimator.report_hit(1.0, 3.0)
        estimator.report_hit(1.0, 3.0)
        for _ in range(50):
            delay = estimator.next_delay()
            assert 3.5 + 1.0 + 0.1 <= delay <= 3.5 + 1.0 + 0.8

    def test_hit_raises_estimate_to_server_value(self, estimator):
        estimator.report_hit(1.5, 5.0)
        assert estimator.estimated_cooldown == 5.0
        assert estimator.consecutive_hits == 1
        assert estimator.success_streak == 0

    def test_hit_never_lowers_estimate(self, estimator):
        estimator.report_hit(1.5, 5.0)
        estimator.report_hit(0.5, 4.0)
        assert estimator.estimated_cooldown == 5.0
        assert estimator.consecutive_hits == 2

    def test_hit_resets_success_streak(self, estimator):
        for _ in range(10):
            estimator.report_success()
        estimator.report_hit(0.2, 3.0)
        assert estimator.success_streak == 0

    def test_success_resets_hits(self, estimator):
        estimator.report_hit(0.2, 3.0)
        estimator.report_success()
        assert estimator.consecutive_hits == 0
        assert estimator.success_streak == 1

    def test_decay_after_twenty_successes(self, estimator):
        """base=3.5, hit to 5.0, then 20 clean casts -> 4.95."""
        estimator.report_hit(1.0, 5.0)
        for _ in range(19):
            estimator.report_success()
        assert estimator.estimated_cooldown == 5.0

        estimator.report_success()
        assert estimator.estimated_cooldown == pytest.approx(4.95)
        assert estimator.success_streak == 0

    def test_decay_floored_at_base(self):
        estimator = CooldownEstimator(3.5, rng=random.Random(1))
        estimator.report_hit(0.1, 3.52)
        for _ in range(200):
            estimator.report_success()
        assert estimator.estimated_cooldown == 3.5

    def test_no_decay_at_base(self, estimator):
        for _ in range(100):
            estimator.report_success()
        assert estimator.estimated_cooldown == 3.5

    def test_estimate_never_below_base_under_mixed_feedback(self):
        rng = random.Random(7)
        estimator = CooldownEstimator(3.5, rng=rng)
        previous = estimator.estimated_cooldown
        for _ in range(2000):
            if rng.random() < 0.05:
                estimator.report_hit(rng.uniform(0, 2), rng.uniform(2, 6))
            else:
                estimator.report_success()
            current = estimator.estimated_cooldown
            assert current >= 3.5
            # Only the decay step may lower the estimate
            assert current >= previous - 0.05 - 1e-9
            previous = current

    def test_constants_overridable(self):
        estimator = CooldownEstimator(2.0, DECAY_STREAK=5, DECAY_STEP=0.5)
        estimator.report_hit(0.0, 4.0)
        for _ in range(5):
            estimator.report_success()
        assert estimator.estimated_cooldown == pytest.approx(3.5)

    def test_unknown_override_rejected(self):
        with pytest.raises(TypeError):
            CooldownEstimator(2.0, decay_step=0.1)
        with pytest.raises(TypeError):
            CooldownEstimator(2.0, NOT_A_CONSTANT=1)
