"""
Shared player profile.

:class:`ProfileState` is the one place the latest known balance, level,
biome, rod and charm bonuses live, together with the captcha flag.  Readers
get immutable :class:`ProfileSnapshot` copies; the lock is only held for the
copy or the write itself, never across an ``await``.
"""

import threading
from dataclasses import dataclass, field, replace
from typing import Optional

from game.game_data import DEFAULT_BIOME, DEFAULT_ROD


@dataclass(frozen=True)
class Bonuses:
    """Charm bonuses as fractions (``0.1`` = +10%)."""
    catch_bonus: float = 0.0
    sell_bonus: float = 0.0
    haste_bonus: float = 0.0


@dataclass(frozen=True)
class ProfileSnapshot:
    """Last parsed profile values."""
    balance: int = 0
    level: int = 0
    biome: str = DEFAULT_BIOME.name
    rod_name: str = DEFAULT_ROD.name
    bonuses: Bonuses = field(default_factory=Bonuses)


class ProfileState:
    """Thread-safe holder for the profile snapshot and the captcha flag."""

    def __init__(self, snapshot: Optional[ProfileSnapshot] = None):
        self._lock = threading.Lock()
        self._snapshot = snapshot or ProfileSnapshot()
        self._captcha_detected = False

    def snapshot(self) -> ProfileSnapshot:
        with self._lock:
            return self._snapshot

    def update(
        self,
        balance: Optional[int] = None,
        level: Optional[int] = None,
        biome: Optional[str] = None,
        rod_name: Optional[str] = None,
        bonuses: Optional[Bonuses] = None,
    ) -> ProfileSnapshot:
        """Overwrite the fields that are not ``None`` and return the result."""
        changes = {
            key: value for key, value in (
                ("balance", balance),
                ("level", level),
                ("biome", biome),
                ("rod_name", rod_name),
                ("bonuses", bonuses),
            ) if value is not None
        }
        with self._lock:
            if changes:
                self._snapshot = replace(self._snapshot, **changes)
            return self._snapshot

    def set_biome(self, biome: str) -> None:
        """Optimistic write after a travel command we issued ourselves."""
        self.update(biome=biome)

    def spend(self, amount: int) -> None:
        """Optimistically deduct a purchase from the balance."""
        with self._lock:
            balance = max(0, self._snapshot.balance - int(amount))
            self._snapshot = replace(self._snapshot, balance=balance)

    @property
    def captcha_detected(self) -> bool:
        with self._lock:
            return self._captcha_detected

    def flag_captcha(self) -> None:
        with self._lock:
            self._captcha_detected = True

    def clear_captcha(self) -> None:
        with self._lock:
            self._captcha_detected = False
