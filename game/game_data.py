"""
Static game tables.

Prices, cast yields and cooldown modifiers of every rod, boat, biome and fish
the optimizer reasons about.  The tables are read-only; lookups are by display
name as it appears in game embeds.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

# Seconds subtracted from the fishing cooldown by each boat in the fleet.
BOAT_COOLDOWN_REDUCTION = 0.25

# Base cooldown (seconds) shared by every biome before penalties.
BASE_BIOME_COOLDOWN = 3.0


@dataclass(frozen=True)
class Rod:
    """A fishing rod."""
    name: str
    price: int
    expected_fish_per_cast: float
    treasure_chance: float = 0.05


@dataclass(frozen=True)
class Boat:
    """A boat; ``cooldown_reduction`` is the fleet total once it is owned."""
    name: str
    price: int
    cooldown_reduction: float = BOAT_COOLDOWN_REDUCTION


@dataclass(frozen=True)
class Biome:
    """A fishing location with its own cooldown penalty and catch rate."""
    name: str
    base_cooldown: float
    cooldown_penalty: float
    catch_rate: float


@dataclass(frozen=True)
class Fish:
    """A catchable fish and the biomes it appears in."""
    name: str
    price: int
    xp: int
    biomes: Tuple[str, ...] = field(default_factory=tuple)


def _rod(name: str, price: int, min_fish: int, max_fish: int, treasure: float = 0.05) -> Rod:
    return Rod(name, price, (min_fish + max_fish) / 2.0, treasure)


# Ordered by price.
RODS: List[Rod] = [
    _rod("Plastic Rod", 0, 4, 10),
    _rod("Improved Rod", 500, 5, 10),
    _rod("Steel Rod", 8_000, 5, 8),
    _rod("Fiberglass Rod", 50_000, 7, 10),
    _rod("Heavy Rod", 100_000, 6, 9, 0.085),
    _rod("Alloy Rod", 250_000, 4, 13),
    _rod("Lava Rod", 1_000_000, 7, 11),
    _rod("Magma Rod", 10_000_000, 10, 13),
    _rod("Oceanium Rod", 75_000_000, 11, 14),
    _rod("Golden Rod", 120_000_000, 4, 6, 0.13),
    _rod("Superium Rod", 250_000_000, 8, 18, 0.055),
    _rod("Infinity Rod", 1_000_000_000, 15, 18, 0.06),
    _rod("Floating Rod", 50_000_000_000, 15, 30, 0.065),
    _rod("Sky Rod", 250_000_000_000, 30, 34, 0.067),
    _rod("Meteor Rod", 500_000_000_000, 20, 24, 0.15),
    _rod("Space Rod", 1_000_000_000_000, 33, 37, 0.068),
    _rod("Alien Rod", 5_000_000_000_000, 37, 42, 0.07),
]

_BOAT_PRICES = [
    ("Rowboat", 5_000),
    ("Fishing Boat", 25_000),
    ("Speedboat", 100_000),
    ("Pontoon", 250_000),
    ("Sailboat", 1_000_000),
    ("Yacht", 20_000_000),
    ("Luxury Yacht", 100_000_000),
    ("Cruise Ship", 500_000_000),
    ("Gold Boat", 2_500_000_000),
    ("Sky Cruiser", 10_000_000_000),
    ("Satellite", 50_000_000_000),
    ("Space Shuttle", 250_000_000_000),
    ("Cruiser", 1_000_000_000_000),
    ("Alien Raft", 2_500_000_000_000),
    ("Alien Submarine", 5_000_000_000_000),
]

# Boats are bought in order and the whole fleet counts, so the n-th boat
# brings the total reduction to n * BOAT_COOLDOWN_REDUCTION.
BOATS: List[Boat] = [
    Boat(name, price, BOAT_COOLDOWN_REDUCTION * position)
    for position, (name, price) in enumerate(_BOAT_PRICES, start=1)
]

BIOMES: List[Biome] = [
    Biome("River", BASE_BIOME_COOLDOWN, 0.0, 1.0),
    Biome("Volcanic", BASE_BIOME_COOLDOWN, 0.5, 0.60),
    Biome("Ocean", BASE_BIOME_COOLDOWN, 1.0, 0.30),
    Biome("Sky", BASE_BIOME_COOLDOWN, 2.0, 0.12),
    Biome("Space", BASE_BIOME_COOLDOWN, 3.0, 0.065),
    Biome("Alien", BASE_BIOME_COOLDOWN, 4.0, 0.03),
]

FISH: Dict[str, Fish] = {f.name: f for f in [
    Fish("Raw Fish", 1, 1, ("River",)),
    Fish("Raw Salmon", 3, 2, ("River", "Volcanic", "Space")),
    Fish("Cod", 10, 5, ("River", "Volcanic")),
    Fish("Tropical Fish", 50, 10, ("River", "Volcanic", "Ocean")),
    Fish("Pufferfish", 150, 25, ("River", "Ocean")),
    Fish("Fiery Pufferfish", 250, 50, ("Volcanic",)),
    Fish("Hot Cod", 500, 100, ("Volcanic",)),
    Fish("Squid", 1_200, 175, ("Ocean", "Sky")),
    Fish("Turtle", 4_000, 400, ("Ocean",)),
    Fish("Dolphin", 20_000, 800, ("Ocean",)),
    Fish("Guardian", 29_000, 1_100, ("Sky",)),
    Fish("Emerald Squid", 42_000, 1_900, ("Sky", "Alien")),
    Fish("Rainbow Fish", 125_000, 4_800, ("Sky", "Space", "Alien")),
    Fish("Space Fish", 200_000, 8_000, ("Space", "Alien")),
    Fish("Galactic Crab", 600_000, 15_000, ("Space",)),
    Fish("Shark", 2_000_000, 35_000, ("Alien",)),
    Fish("Alien Fish", 5_000_000, 65_000, ("Alien",)),
]}

DEFAULT_ROD = RODS[0]
DEFAULT_BOAT = BOATS[0]
DEFAULT_BIOME = BIOMES[0]


def _normalise(name: str) -> str:
    return " ".join(name.split()).lower()


def _find(items, name: Optional[str], suffix: str = ""):
    if not name:
        return None
    wanted = _normalise(name)
    for item in items:
        key = _normalise(item.name)
        if key == wanted or (suffix and key == f"{wanted} {suffix}"):
            return item
    return None


def find_rod(name: Optional[str]) -> Optional[Rod]:
    """Look up a rod by name; ``"Steel"`` and ``"Steel Rod"`` both match."""
    return _find(RODS, name, suffix="rod")


def find_boat(name: Optional[str]) -> Optional[Boat]:
    return _find(BOATS, name)


def find_biome(name: Optional[str]) -> Optional[Biome]:
    return _find(BIOMES, name)


def find_fish(name: Optional[str]) -> Optional[Fish]:
    """Look up a fish by name.

    Catch embeds sometimes drop the ``Raw`` prefix (``"Salmon"`` for
    ``"Raw Salmon"``), so that form is accepted too.
    """
    if not name:
        return None
    wanted = _normalise(name)
    for fish in FISH.values():
        key = _normalise(fish.name)
        if key == wanted or key == f"raw {wanted}":
            return fish
    return None


def fish_price(name: str) -> int:
    """Sell price of one fish, ``0`` for unknown names."""
    fish = find_fish(name)
    return fish.price if fish else 0
