"""Operator-facing status for the running bot.

:class:`BotStatus` collects the counters the orchestrator updates every
cycle; :class:`StatusDashboard` renders them with Rich for the console
(periodic status lines and the final summary on shutdown).
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from rich import box
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


def _format_duration(seconds: float) -> str:
    seconds = int(max(0, seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes:02d}m"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


@dataclass
class BotStatus:
    """Live counters for one bot run.

    ``operator_alert`` is set once authorization failures repeat; it stays
    set until a submission succeeds again.
    """

    state: str = "idle"
    started_at: float = field(default_factory=time.time)
    casts: int = 0
    fish_caught: int = 0
    gold_observed: int = 0
    xp_observed: int = 0
    cooldown_hits: int = 0
    estimated_cooldown: float = 0.0
    purchases: int = 0
    travels: int = 0
    sells: int = 0
    scheduled_runs: int = 0
    submission_failures: int = 0
    consecutive_auth_failures: int = 0
    captcha_prompts: int = 0
    operator_alert: Optional[str] = None
    last_error: Optional[str] = None
    last_recommendation: Optional[str] = None
    balance: int = 0
    biome: str = ""
    rod_name: str = ""

    @property
    def uptime(self) -> float:
        return time.time() - self.started_at

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.__dict__)
        data["uptime"] = self.uptime
        return data


class StatusDashboard:
    """Render :class:`BotStatus` for the terminal."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def render_status_table(self, status: BotStatus) -> Table:
        table = Table(title="Autofish Status", box=box.ROUNDED, show_header=False)
        table.add_column("Metric", style="cyan", no_wrap=True)
        table.add_column("Value", justify="right")

        state_style = "red" if status.state == "awaiting_captcha" else "green"
        table.add_row("State", Text(status.state, style=state_style))
        table.add_row("Uptime", _format_duration(status.uptime))
        table.add_row("Biome / Rod", f"{status.biome or '?'} / {status.rod_name or '?'}")
        table.add_row("Balance", f"${status.balance:,}")
        table.add_row("Casts", str(status.casts))
        table.add_row("Fish caught", str(status.fish_caught))
        table.add_row("Gold / XP observed", f"{status.gold_observed:,} / {status.xp_observed:,}")
        table.add_row("Cooldown estimate", f"{status.estimated_cooldown:.2f}s")
        table.add_row("Cooldown hits", str(status.cooldown_hits))
        table.add_row("Purchases / Travels / Sells",
                      f"{status.purchases} / {status.travels} / {status.sells}")
        table.add_row("Scheduled tasks run", str(status.scheduled_runs))
        table.add_row("Captcha prompts", str(status.captcha_prompts))
        failures = Text(str(status.submission_failures),
                        style="yellow" if status.submission_failures else "green")
        table.add_row("Submission failures", failures)
        if status.last_recommendation:
            table.add_row("Last recommendation", status.last_recommendation)
        if status.last_error:
            table.add_row("Last error", Text(status.last_error, style="yellow"))
        return table

    def render_alert_panel(self, status: BotStatus) -> Optional[Panel]:
        if not status.operator_alert:
            return None
        return Panel(
            Text(status.operator_alert, style="bold red"),
            title="⚠️ Operator attention required",
            border_style="red",
        )

    def render(self, status: BotStatus):
        table = self.render_status_table(status)
        alert = self.render_alert_panel(status)
        return Group(alert, table) if alert else table

    def print_status(self, status: BotStatus) -> None:
        self.console.print(self.render(status))

    @staticmethod
    def status_line(status: BotStatus) -> str:
        """Compact one-line summary for the log."""
        line = (
            f"📊 {status.state} | casts {status.casts} | fish {status.fish_caught} | "
            f"gold {status.gold_observed:,} | cd {status.estimated_cooldown:.2f}s | "
            f"fails {status.submission_failures}"
        )
        if status.operator_alert:
            line += f" | ALERT: {status.operator_alert}"
        return line
