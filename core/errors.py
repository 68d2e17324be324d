"""Error taxonomy for the autofish bot.

Every failure the bot can recover from locally maps onto one of the
exception families below.  The orchestrator and the gateway decide how to
recover by family, never by message text:

* :class:`TransportError` -- connection drop, read/write failure or a
  missed heartbeat.  The gateway tears down and reconnects after a fixed
  delay.
* :class:`ProtocolError` -- malformed frame or unexpected opcode ordering.
  The frame is dropped and logged.
* :class:`ActionSubmissionError` -- REST failure, rate limit or a command
  that cannot be found.  The action is skipped for this cycle.
* :class:`ConfigurationError` -- missing credentials.  Fatal at startup only.
"""

from enum import Enum
from typing import Optional


class ErrorType(Enum):
    """Classification of action-submission failures.

    Members:
        TRANSIENT: Timeouts, connection resets, 5xx responses.
        RATE_LIMIT: HTTP 429 from the platform.
        AUTH: 401/403 -- token revoked or account locked.  Surfaced to the
            operator when it repeats.
        NOT_FOUND: The slash command is not registered in the guild.
        UNKNOWN: Anything else.
    """

    TRANSIENT = "transient"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


class BotError(Exception):
    """Base class for all bot errors."""


class ConfigurationError(BotError):
    """Required configuration is missing or invalid."""


class TransportError(BotError):
    """The real-time connection failed and must be re-established."""


class HeartbeatTimeout(TransportError):
    """No HeartbeatAck arrived before the next heartbeat was due."""


class ProtocolError(BotError):
    """A gateway frame could not be decoded or arrived out of order."""


class ActionSubmissionError(BotError):
    """An outbound game action could not be submitted.

    Attributes:
        error_type: :class:`ErrorType` used for recovery decisions.
        status: HTTP status code when the failure came from a response.
    """

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.UNKNOWN,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.status = status

    @classmethod
    def from_status(cls, status: int, body: str = "") -> "ActionSubmissionError":
        """Build an error from a non-2xx HTTP response."""
        if status in (401, 403):
            error_type = ErrorType.AUTH
        elif status == 404:
            error_type = ErrorType.NOT_FOUND
        elif status >= 500:
            error_type = ErrorType.TRANSIENT
        else:
            error_type = ErrorType.UNKNOWN
        return cls(f"HTTP {status}: {body[:200]}", error_type=error_type, status=status)


class RateLimitedError(ActionSubmissionError):
    """HTTP 429 -- the platform asked us to slow down."""

    def __init__(self, retry_after: float, body: str = "") -> None:
        super().__init__(
            f"Rate limited (retry after {retry_after:.2f}s): {body[:200]}",
            error_type=ErrorType.RATE_LIMIT,
            status=429,
        )
        self.retry_after = retry_after


class CommandNotFoundError(ActionSubmissionError):
    """The slash command is not available in the configured guild."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Command '{name}' not found in guild",
            error_type=ErrorType.NOT_FOUND,
        )
        self.name = name
