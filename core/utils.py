"""Small helpers shared by the autofish core modules.

The JSON helpers keep ``config/bot_config.json`` usable even when the
process is killed halfway through a write: every write goes through a
temporary file and the previous generations are kept as numbered backups.
"""

import json
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def _backup_paths(filepath: str, max_backups: int):
    return [f"{filepath}.backup.{i}" for i in range(1, max_backups + 1)]


def safe_json_read(
    filepath: str, max_backups: int = 3,
) -> Optional[Dict[str, Any]]:
    """Read a JSON object, falling back to the newest readable backup.

    Args:
        filepath: Path to the primary JSON file.
        max_backups: How many ``<file>.backup.N`` generations to try.

    Returns:
        The decoded object, or ``None`` when no candidate file exists or
        every candidate is corrupt.
    """
    for path in [filepath] + _backup_paths(filepath, max_backups):
        if not os.path.exists(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Skipping unreadable JSON file %s: %s", path, exc)
            continue
        if isinstance(data, dict):
            if path != filepath:
                logger.info("Recovered %s from backup %s", filepath, path)
            return data
    return None


def safe_json_write(
    filepath: str,
    data: Dict[str, Any],
    max_backups: int = 3,
) -> bool:
    """Write *data* atomically, rotating the previous file into backups.

    Returns:
        ``True`` when the new content is in place.
    """
    try:
        dirpath = os.path.dirname(filepath)
        if dirpath:
            os.makedirs(dirpath, exist_ok=True)

        if os.path.exists(filepath):
            backups = _backup_paths(filepath, max_backups)
            for older, newer in zip(reversed(backups[:-1]), reversed(backups[1:])):
                if os.path.exists(older):
                    os.replace(older, newer)
            os.replace(filepath, backups[0])

        temp_file = filepath + ".tmp"
        with open(temp_file, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)

        # Re-read before committing
        with open(temp_file, "r", encoding="utf-8") as fh:
            json.load(fh)

        os.replace(temp_file, filepath)
        return True
    except (OSError, ValueError, TypeError) as e:
        logger.warning("Could not safely write JSON to %s: %s", filepath, e)
        return False


def parse_int(text: str) -> int:
    """Parse an integer that may contain thousands separators (``1,234``)."""
    return int(text.replace(",", "").strip())
