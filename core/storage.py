"""
SQLite persistence for learned catch statistics and play history.

Only :class:`~core.optimizer.BiomeStats` is read back at startup; the
history tables (catches, cooldown hits, profile snapshots) are write-only
records for later analysis.
"""

import logging
import sqlite3
import time
from typing import Dict, Optional

from core.optimizer import BiomeStats

logger = logging.getLogger(__name__)


class Storage:
    """
    Thin SQLite wrapper.

    A connection is opened per call, so the object can be shared freely and
    the database file can be inspected while the bot is running.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._init_database()
        logger.info(f"Storage initialized with database: {db_path}")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_database(self) -> None:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS biome_stats (
                    biome TEXT PRIMARY KEY,
                    total_catches INTEGER NOT NULL DEFAULT 0,
                    total_gold INTEGER NOT NULL DEFAULT 0,
                    total_xp INTEGER NOT NULL DEFAULT 0,
                    avg_gold_per_fish REAL NOT NULL DEFAULT 0.0,
                    avg_xp_per_fish REAL NOT NULL DEFAULT 0.0,
                    updated_at REAL NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS catch_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL NOT NULL,
                    fish_name TEXT NOT NULL,
                    quantity INTEGER NOT NULL,
                    xp INTEGER DEFAULT 0,
                    biome TEXT,
                    money_gained INTEGER DEFAULT 0
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS player_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL NOT NULL,
                    level INTEGER,
                    balance INTEGER,
                    current_biome TEXT,
                    rod_name TEXT
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS cooldown_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL NOT NULL,
                    wait_time REAL,
                    total_cooldown REAL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_catch_timestamp
                ON catch_history(timestamp)
            """)
            conn.commit()
        finally:
            conn.close()

    def load_biome_stats(self) -> Dict[str, BiomeStats]:
        """Return every stored biome's statistics keyed by biome name."""
        conn = self._connect()
        try:
            rows = conn.execute("""
                SELECT biome, total_catches, total_gold, total_xp,
                       avg_gold_per_fish, avg_xp_per_fish
                FROM biome_stats
            """).fetchall()
        finally:
            conn.close()

        stats = {
            row[0]: BiomeStats(
                total_catches=row[1],
                total_gold=row[2],
                total_xp=row[3],
                avg_gold_per_fish=row[4],
                avg_xp_per_fish=row[5],
            )
            for row in rows
        }
        logger.info(f"Loaded catch statistics for {len(stats)} biome(s)")
        return stats

    def save_biome_stats(self, biome: str, stats: BiomeStats) -> None:
        """Insert or replace one biome's statistics.

        Raises:
            sqlite3.Error: If the write fails.
        """
        conn = self._connect()
        try:
            conn.execute("""
                INSERT INTO biome_stats (
                    biome, total_catches, total_gold, total_xp,
                    avg_gold_per_fish, avg_xp_per_fish, updated_at
                ) VALUES (
                    :biome, :total_catches, :total_gold, :total_xp,
                    :avg_gold_per_fish, :avg_xp_per_fish, :updated_at
                )
                ON CONFLICT(biome) DO UPDATE SET
                    total_catches = excluded.total_catches,
                    total_gold = excluded.total_gold,
                    total_xp = excluded.total_xp,
                    avg_gold_per_fish = excluded.avg_gold_per_fish,
                    avg_xp_per_fish = excluded.avg_xp_per_fish,
                    updated_at = excluded.updated_at
            """, {**stats.to_dict(), "biome": biome, "updated_at": time.time()})
            conn.commit()
        finally:
            conn.close()
        logger.debug(f"Checkpointed {biome} stats at {stats.total_catches} catches")

    def _insert(self, sql: str, params: tuple) -> Optional[int]:
        try:
            conn = self._connect()
            try:
                cursor = conn.execute(sql, params)
                conn.commit()
                return cursor.lastrowid
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Failed to write history row: {e}")
            return None

    def log_catch(self, fish_name: str, quantity: int, xp: int, biome: str,
                  money_gained: int = 0) -> Optional[int]:
        return self._insert("""
            INSERT INTO catch_history (timestamp, fish_name, quantity, xp, biome, money_gained)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (time.time(), fish_name, quantity, xp, biome, money_gained))

    def log_cooldown(self, wait_time: float, total_cooldown: float) -> Optional[int]:
        return self._insert("""
            INSERT INTO cooldown_events (timestamp, wait_time, total_cooldown)
            VALUES (?, ?, ?)
        """, (time.time(), wait_time, total_cooldown))

    def log_snapshot(self, level: int, balance: int, biome: str,
                     rod_name: Optional[str] = None) -> Optional[int]:
        return self._insert("""
            INSERT INTO player_snapshots (timestamp, level, balance, current_biome, rod_name)
            VALUES (?, ?, ?, ?, ?)
        """, (time.time(), level, balance, biome, rod_name))

    def count_rows(self, table: str) -> int:
        """Row count of a history table (used by status reporting)."""
        if table not in ("catch_history", "player_snapshots", "cooldown_events", "biome_stats"):
            raise ValueError(f"Unknown table: {table}")
        conn = self._connect()
        try:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        finally:
            conn.close()
