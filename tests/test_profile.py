"""
Tests for the shared profile state.
"""

import threading

import pytest

from game.profile import ProfileSnapshot, ProfileState


class TestProfileState:

    def test_defaults(self):
        snap = ProfileState().snapshot()
        assert snap.balance == 0
        assert snap.biome == "River"
        assert snap.rod_name == "Plastic Rod"

    def test_update_skips_none(self):
        state = ProfileState()
        state.update(balance=500, level=3)
        snap = state.update(biome="Ocean")
        assert snap == ProfileSnapshot(balance=500, level=3, biome="Ocean", rod_name="Plastic Rod")

    def test_snapshot_is_immutable(self):
        snap = ProfileState().snapshot()
        with pytest.raises(Exception):
            snap.balance = 10

    def test_set_biome(self):
        state = ProfileState()
        state.set_biome("Volcanic")
        assert state.snapshot().biome == "Volcanic"

    def test_spend_floors_at_zero(self):
        state = ProfileState(ProfileSnapshot(balance=100))
        state.spend(30)
        assert state.snapshot().balance == 70
        state.spend(500)
        assert state.snapshot().balance == 0

    def test_captcha_flag(self):
        state = ProfileState()
        assert not state.captcha_detected
        state.flag_captcha()
        assert state.captcha_detected
        state.clear_captcha()
        assert not state.captcha_detected

    def test_concurrent_spend(self):
        state = ProfileState(ProfileSnapshot(balance=10_000))

        def worker():
            for _ in range(1000):
                state.spend(1)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert state.snapshot().balance == 5_000
