"""
Game message parsing.

Turns ``MESSAGE_CREATE`` / ``MESSAGE_UPDATE`` dispatch payloads posted by the
game bot into typed signals the orchestrator acts on: catches, cooldown
warnings, profile snapshots, charm bonuses, a full inventory and captcha
prompts.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.utils import parse_int
from game.profile import Bonuses

logger = logging.getLogger(__name__)

# "3 <:salmon:123> Salmon" or "1 Golden Fish" (markdown already stripped)
CATCH_LINE_PATTERN = re.compile(
    r"^\s*(\d[\d,]*)\s+(?:<a?:\w+:\d+>\s*|[^\w\s]+\s*)?([A-Za-z][A-Za-z ]*?)\s*$"
)
# "+173 XP" or "+37,129 XP"
XP_PATTERN = re.compile(r"\+([\d,]+)\s+XP")
# "Balance: **$3,548**"
BALANCE_PATTERN = re.compile(r"Balance: \*\*\$([\d,]+)\*\*")
# "Level 21"
LEVEL_PATTERN = re.compile(r"Level (\d+)")
# "Current Biome: <:river:1> **River**"
BIOME_PATTERN = re.compile(r"Current Biome: .* \*\*([\w\s]+)\*\*", re.IGNORECASE)
# "<:steel:1> **Steel Rod**" anywhere in the profile body
ROD_PATTERN = re.compile(r"\b([A-Z][a-z]+ Rod)\b")
# "You must wait **2.5**s"
COOLDOWN_WAIT_PATTERN = re.compile(r"You must wait \*\*([\d.]+)\*\*s")
# "Current cooldown: **3.5** seconds"
COOLDOWN_TOTAL_PATTERN = re.compile(r"Current cooldown: \*\*([\d.]+)\*\* seconds")

CAPTCHA_PATTERN = re.compile(r"captcha|verify that you are human", re.IGNORECASE)
CAPTCHA_CLEARED_PATTERN = re.compile(
    r"you may now continue|captcha (?:solved|completed)|successfully verified",
    re.IGNORECASE,
)
INVENTORY_FULL_PATTERN = re.compile(r"inventory is full", re.IGNORECASE)
# "**12** / 50 <:marketing:1> Marketing" or "10% / 50% Haste"
CHARM_VALUE_PATTERN = re.compile(r"^\s*([\d.]+)\s*%?\s*/")
# Charms that feed the income model, by the Bonuses field they set
CHARM_FIELDS = {
    "Quantity": "catch_bonus",
    "Marketing": "sell_bonus",
    "Haste": "haste_bonus",
}


@dataclass
class CatchEvent:
    """Fish (name, count) pairs and the XP awarded by one cast."""
    fish: List[Tuple[str, int]] = field(default_factory=list)
    xp: int = 0

    @property
    def total_fish(self) -> int:
        return sum(count for _, count in self.fish)


@dataclass
class CooldownEvent:
    """A "you must wait" warning after fishing too early."""
    wait_time: float
    total_cooldown: float


@dataclass
class ProfileUpdate:
    """Fields found in a profile embed; ``None`` where absent."""
    balance: Optional[int] = None
    level: Optional[int] = None
    biome: Optional[str] = None
    rod_name: Optional[str] = None


@dataclass
class GameMessage:
    """Everything recognised in a single message."""
    message_id: Optional[str] = None
    catch: Optional[CatchEvent] = None
    cooldown: Optional[CooldownEvent] = None
    profile: Optional[ProfileUpdate] = None
    charms: Optional[Bonuses] = None
    inventory_full: bool = False
    captcha: bool = False
    captcha_cleared: bool = False

    @property
    def is_empty(self) -> bool:
        return not (
            self.catch or self.cooldown or self.profile or self.charms
            or self.inventory_full or self.captcha or self.captcha_cleared
        )


def parse_catch_embed(description: str) -> Optional[CatchEvent]:
    """Extract caught fish and XP from a catch embed body."""
    event = CatchEvent()
    for raw_line in description.splitlines():
        line = raw_line.replace("*", "")
        xp_match = XP_PATTERN.search(line)
        if xp_match:
            event.xp = parse_int(xp_match.group(1))
            continue
        match = CATCH_LINE_PATTERN.match(line)
        if match:
            name = match.group(2).strip()
            if name.upper().endswith("XP"):
                continue
            event.fish.append((name, parse_int(match.group(1))))

    if event.fish or event.xp > 0:
        return event
    return None


def parse_cooldown_embed(description: str) -> Optional[CooldownEvent]:
    """Extract the remaining wait and the total cooldown from a warning."""
    wait = 0.0
    total = 0.0
    match = COOLDOWN_WAIT_PATTERN.search(description)
    if match:
        try:
            wait = float(match.group(1))
        except ValueError:
            pass
    match = COOLDOWN_TOTAL_PATTERN.search(description)
    if match:
        try:
            total = float(match.group(1))
        except ValueError:
            pass

    if wait > 0 or total > 0:
        return CooldownEvent(wait_time=wait, total_cooldown=total)
    return None


def parse_profile_embed(description: str) -> ProfileUpdate:
    update = ProfileUpdate()

    match = BALANCE_PATTERN.search(description)
    if match:
        update.balance = parse_int(match.group(1))

    match = LEVEL_PATTERN.search(description)
    if match:
        update.level = int(match.group(1))

    match = BIOME_PATTERN.search(description)
    if match:
        update.biome = match.group(1).strip()

    match = ROD_PATTERN.search(description.replace("*", ""))
    if match:
        update.rod_name = match.group(1)

    return update


def parse_charms_embed(description: str) -> Optional[Bonuses]:
    """Read charm levels from a "Charms" embed.

    Each level is worth one percent, so ``12 / 50 Marketing`` becomes a
    ``sell_bonus`` of ``0.12``.  Charms that do not affect income are ignored.
    """
    values: Dict[str, float] = {}
    for raw_line in description.splitlines():
        line = raw_line.replace("*", "").replace("+", "").replace("_", "")
        match = CHARM_VALUE_PATTERN.match(line)
        if not match:
            continue
        for charm, attr in CHARM_FIELDS.items():
            if charm in line:
                try:
                    values[attr] = float(match.group(1)) / 100.0
                except ValueError:
                    pass
                break

    if not values:
        return None
    return Bonuses(**values)


def _embeds(data: Dict[str, Any]) -> List[Tuple[str, str]]:
    embeds = data.get("embeds") or []
    result = []
    for embed in embeds:
        if not isinstance(embed, dict):
            continue
        result.append((embed.get("title") or "", embed.get("description") or ""))
    return result


def parse_message(data: Dict[str, Any]) -> GameMessage:
    """Classify a message payload posted by the game bot.

    Args:
        data: The ``d`` field of a ``MESSAGE_CREATE`` or ``MESSAGE_UPDATE``
            dispatch.

    Returns:
        A :class:`GameMessage`; check ``is_empty`` for unrelated messages.
    """
    message = GameMessage(message_id=data.get("id"))
    content = data.get("content") or ""
    texts = [content]

    for title, description in _embeds(data):
        texts.extend([title, description])

        if "You caught" in title:
            message.catch = parse_catch_embed(description)
        elif "Charms" in title:
            message.charms = parse_charms_embed(description)
        elif "Profile" in title or "Inventory" in title:
            message.profile = parse_profile_embed(description)

        if message.cooldown is None:
            message.cooldown = parse_cooldown_embed(description)

    combined = "\n".join(t for t in texts if t)
    if CAPTCHA_CLEARED_PATTERN.search(combined):
        message.captcha_cleared = True
    elif CAPTCHA_PATTERN.search(combined):
        message.captcha = True

    if INVENTORY_FULL_PATTERN.search(combined):
        message.inventory_full = True

    if not message.is_empty:
        logger.debug(f"Parsed game message {message.message_id}: {message}")
    return message
