"""
HTTPS action submission.

Slash commands and button presses are submitted as interactions through the
REST API.  :class:`ActionClient` looks up command descriptors in the guild's
application-command index and posts them back verbatim with the options the
bot wants to send.  Every request has a 15 second total timeout; failures are
raised as :class:`~core.errors.ActionSubmissionError` and never retried here.
"""

import asyncio
import json
import logging
import random
import string
import time
from typing import Any, Callable, Dict, List, Optional, Union

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

from core.config import BotSettings
from core.errors import ActionSubmissionError, ErrorType, RateLimitedError

logger = logging.getLogger(__name__)

INTERACTION_APPLICATION_COMMAND = 2
INTERACTION_MESSAGE_COMPONENT = 3
COMPONENT_BUTTON = 2
OPTION_STRING = 3

# Platform epoch (2015-01-01) used to build snowflake nonces.
_EPOCH_MS = 1420070400000


class CommandOption(BaseModel):
    """An option of a slash command (possibly a nested sub-command)."""
    model_config = ConfigDict(extra="ignore")

    type: int = OPTION_STRING
    name: str
    description: str = ""
    required: bool = False
    options: List["CommandOption"] = Field(default_factory=list)


CommandOption.model_rebuild()


class CommandDescriptor(BaseModel):
    """The fields of an application command the bot inspects.

    ``raw`` keeps the untouched document from the index, which the API
    expects back unchanged in ``data.application_command``.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    application_id: str
    version: str
    name: str
    type: int = 1
    options: List[CommandOption] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_raw(cls, document: Dict[str, Any]) -> "CommandDescriptor":
        descriptor = cls.model_validate(document)
        descriptor.raw = dict(document)
        return descriptor

    def option(self, name: str) -> Optional[CommandOption]:
        for opt in self.options:
            if opt.name == name:
                return opt
        return None

    def build_options(self, values: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]]) -> List[Dict[str, Any]]:
        """Turn ``{name: value}`` into the interaction option list.

        A list is assumed to be in wire format already and passes through.
        """
        if not values:
            return []
        if isinstance(values, list):
            return values
        built = []
        for name, value in values.items():
            known = self.option(name)
            built.append({
                "type": known.type if known else OPTION_STRING,
                "name": name,
                "value": value,
            })
        return built


def _nonce() -> str:
    return str((int(time.time() * 1000) - _EPOCH_MS) << 22)


def _random_session_id() -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(random.choice(alphabet) for _ in range(32))


class ActionClient:
    """Submit commands and component interactions for one account.

    Args:
        settings: Token, API base URL, timeout, user agent and proxy.
        http_session: Shared :class:`aiohttp.ClientSession`.
        session_id_provider: Returns the live gateway session id, if any.
            A random id is used until the gateway has one.
    """

    def __init__(
        self,
        settings: BotSettings,
        http_session: aiohttp.ClientSession,
        session_id_provider: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.settings = settings
        self._http = http_session
        self._session_id_provider = session_id_provider
        self._fallback_session_id = _random_session_id()
        self._timeout = aiohttp.ClientTimeout(total=settings.http_timeout_seconds)
        self.application_id = settings.game_application_id

    @property
    def session_id(self) -> str:
        if self._session_id_provider:
            live = self._session_id_provider()
            if live:
                return live
        return self._fallback_session_id

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": self.settings.user_token or "",
            "User-Agent": self.settings.user_agent,
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.settings.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        try:
            async with self._http.request(
                method,
                self._url(path),
                json=payload,
                headers=self._headers(),
                timeout=self._timeout,
                proxy=self.settings.proxy_url,
            ) as resp:
                body = await resp.text()
                if resp.status == 429:
                    retry_after = 1.0
                    try:
                        retry_after = float(json.loads(body).get("retry_after", 1.0))
                    except (ValueError, TypeError, AttributeError):
                        pass
                    raise RateLimitedError(retry_after, body)
                if resp.status >= 400:
                    raise ActionSubmissionError.from_status(resp.status, body)
                if resp.status == 204 or not body:
                    return None
                try:
                    return json.loads(body)
                except ValueError:
                    return None
        except asyncio.TimeoutError as e:
            raise ActionSubmissionError(
                f"{method} {path} timed out after {self._timeout.total:.0f}s",
                error_type=ErrorType.TRANSIENT,
            ) from e
        except aiohttp.ClientError as e:
            raise ActionSubmissionError(
                f"{method} {path} failed: {e}", error_type=ErrorType.TRANSIENT,
            ) from e

    async def lookup_command(self, guild_id: str, name: str) -> Optional[CommandDescriptor]:
        """Find the game's slash command *name* in the guild's command index.

        Returns:
            The descriptor, or ``None`` if the game bot has no such command.

        Raises:
            ActionSubmissionError: The index could not be fetched.
        """
        body = await self._request("GET", f"guilds/{guild_id}/application-command-index")
        commands = body.get("application_commands") if isinstance(body, dict) else None
        if not isinstance(commands, list):
            raise ActionSubmissionError("Unexpected application-command-index response")

        for document in commands:
            if not isinstance(document, dict):
                continue
            if str(document.get("application_id")) != self.application_id:
                continue
            if document.get("name") == name:
                descriptor = CommandDescriptor.from_raw(document)
                logger.debug(f"Resolved command /{name} -> {descriptor.id}")
                return descriptor
        logger.warning(f"Command /{name} not found in guild {guild_id}")
        return None

    async def submit_command(
        self,
        guild_id: str,
        channel_id: str,
        descriptor: CommandDescriptor,
        options: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]] = None,
    ) -> None:
        """Run a slash command in the channel."""
        payload = {
            "type": INTERACTION_APPLICATION_COMMAND,
            "application_id": self.application_id,
            "guild_id": guild_id,
            "channel_id": channel_id,
            "session_id": self.session_id,
            "data": {
                "version": descriptor.version,
                "id": descriptor.id,
                "name": descriptor.name,
                "type": descriptor.type,
                "options": descriptor.build_options(options),
                "application_command": descriptor.raw or descriptor.model_dump(),
                "attachments": [],
            },
            "nonce": _nonce(),
        }
        await self._request("POST", "interactions", payload)
        logger.debug(f"Submitted /{descriptor.name} {options or ''}")

    async def submit_component_interaction(
        self,
        guild_id: str,
        channel_id: str,
        message_id: str,
        custom_id: str,
    ) -> None:
        """Press a button on a message posted by the game bot."""
        payload = {
            "type": INTERACTION_MESSAGE_COMPONENT,
            "nonce": _nonce(),
            "guild_id": guild_id,
            "channel_id": channel_id,
            "message_flags": 0,
            "message_id": message_id,
            "application_id": self.application_id,
            "session_id": self.session_id,
            "data": {
                "component_type": COMPONENT_BUTTON,
                "custom_id": custom_id,
            },
        }
        await self._request("POST", "interactions", payload)
        logger.debug(f"Pressed component {custom_id} on message {message_id}")
