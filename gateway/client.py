"""
Resumable gateway client.

:class:`GatewayClient` keeps one push-event session alive for the lifetime
of the process.  A single connection is served by four asyncio tasks:

* **reader** -- decodes frames off the websocket, applies heartbeat ACKs
  directly and puts everything else on a bounded inbound queue;
* **writer** -- the only code that writes to the websocket, fed by an
  outbound queue;
* **heartbeat** -- waits for Hello, then beats on the server's interval and
  fails the connection when an ACK is missing;
* **coordinator** -- :meth:`GatewayClient._coordinate`, which handles
  inbound frames in order and owns :class:`~gateway.protocol.SessionState`.

Connection lifecycle::

    Disconnected -> Connecting -> AwaitHello -> Active -> (Resuming | Disconnected)

No heartbeat is ever sent before Hello.  Dispatch events are forwarded to
``events`` in order with a blocking ``put``.  A slow consumer stalls the
coordinator, then fills the inbound queue and stalls the reader; the
heartbeat task keeps running throughout.  A sequence gap is never
forwarded and instead forces a Resume so the server replays what was
missed.  :meth:`GatewayClient.run_forever` reconnects after every failure
and never gives up.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import aiohttp

from core.config import BotSettings
from core.errors import HeartbeatTimeout, ProtocolError, TransportError
from gateway.protocol import (
    GatewayEnvelope,
    Opcode,
    SessionState,
    decode_frame,
    heartbeat_frame,
    hello_interval,
    identify_frame,
    resume_frame,
)

logger = logging.getLogger(__name__)

EVENT_QUEUE_SIZE = 100
INBOUND_QUEUE_SIZE = 100
GATEWAY_QUERY = "?v=9&encoding=json"

# Close codes after which the stored session cannot be resumed.
NON_RESUMABLE_CLOSE_CODES = {4007, 4009}
AUTH_FAILED_CLOSE_CODE = 4004


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAIT_HELLO = "await_hello"
    ACTIVE = "active"
    RESUMING = "resuming"


class RestartReason(Enum):
    """Why a healthy connection was closed on purpose."""
    RECONNECT = "reconnect"
    INVALID_SESSION = "invalid_session"
    SECOND_HELLO = "second_hello"
    SEQUENCE_GAP = "sequence_gap"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class _TransportFailure:
    """Inbound-queue marker: the socket closed or a read failed."""
    reason: str
    close_code: Optional[int] = None


class GatewayClient:
    """Maintain a resumable gateway session and forward Dispatch events.

    Args:
        settings: Token, gateway URL, identify properties, reconnect delay.
        http_session: Shared :class:`aiohttp.ClientSession` used for
            ``ws_connect``.
        events: Queue receiving Dispatch envelopes; a bounded queue is
            created when omitted.
        rng: Random source for heartbeat jitter.
    """

    PROTOCOL_RESTART_DELAY = 1.0

    def __init__(
        self,
        settings: BotSettings,
        http_session: Optional[aiohttp.ClientSession] = None,
        events: Optional[asyncio.Queue] = None,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self._http = http_session
        self.events: asyncio.Queue = events if events is not None else asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)
        self.session_state = SessionState()
        self.state = ConnectionState.DISCONNECTED
        self.reconnect_delay = settings.reconnect_delay_seconds
        self.connect_count = 0
        self._rng = rng or random.Random()
        self._stop_event = asyncio.Event()
        self._ws: Any = None
        self._properties = {
            "os": settings.gateway_os,
            "browser": settings.gateway_browser,
            "device": settings.gateway_device,
        }

    @property
    def session_id(self) -> Optional[str]:
        return self.session_state.session_id

    @property
    def connected(self) -> bool:
        return self.state in (ConnectionState.ACTIVE, ConnectionState.RESUMING)

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def run_forever(self) -> None:
        """Keep a session alive until :meth:`stop` is called."""
        logger.info("🌐 Gateway supervisor started.")
        while not self._stop_event.is_set():
            delay = self.reconnect_delay
            try:
                reason = await self.connect_once()
                if reason == RestartReason.SHUTDOWN:
                    break
                logger.info(f"Gateway restarting ({reason.value})")
                delay = self.PROTOCOL_RESTART_DELAY
            except asyncio.CancelledError:
                raise
            except HeartbeatTimeout as e:
                logger.warning(f"💔 {e}; reconnecting in {delay:.1f}s")
            except (TransportError, aiohttp.ClientError, OSError) as e:
                logger.warning(f"Gateway transport failure: {e}; reconnecting in {delay:.1f}s")
            except Exception as e:
                logger.error(f"Unexpected gateway error: {e}; reconnecting in {delay:.1f}s", exc_info=True)
            finally:
                self.state = ConnectionState.DISCONNECTED

            if await self._wait_stop(delay):
                break
        logger.info("Gateway supervisor stopped.")

    async def stop(self) -> None:
        self._stop_event.set()
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close()

    async def _wait_stop(self, timeout: float) -> bool:
        """Sleep up to *timeout*; ``True`` if a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # ------------------------------------------------------------------
    # One connection
    # ------------------------------------------------------------------

    def _gateway_url(self) -> str:
        resume_url = self.session_state.resume_url
        if self.session_state.can_resume and resume_url:
            return f"{resume_url.rstrip('/')}/{GATEWAY_QUERY}"
        return self.settings.gateway_url

    async def _connect(self):
        if self._http is None:
            raise TransportError("No HTTP session available for the gateway connection")
        return await self._http.ws_connect(
            self._gateway_url(),
            headers={"User-Agent": self.settings.user_agent},
            proxy=self.settings.proxy_url,
            autoping=True,
            max_msg_size=0,
        )

    async def connect_once(self) -> RestartReason:
        """Run a single connection until it ends.

        Returns:
            The :class:`RestartReason` when the connection was closed on
            purpose.

        Raises:
            TransportError: The socket failed or a heartbeat went unanswered.
        """
        if self._stop_event.is_set():
            return RestartReason.SHUTDOWN

        self.state = ConnectionState.CONNECTING
        self.connect_count += 1
        logger.info(f"Connecting to gateway (attempt {self.connect_count})...")
        ws = await self._connect()
        self._ws = ws

        inbound: asyncio.Queue = asyncio.Queue(maxsize=INBOUND_QUEUE_SIZE)
        outbound: asyncio.Queue = asyncio.Queue()
        hello = asyncio.Event()
        reader = asyncio.create_task(self._reader(ws, inbound), name="gateway-reader")
        writer = asyncio.create_task(self._writer(ws, outbound), name="gateway-writer")
        heartbeat = asyncio.create_task(self._heartbeat(outbound, hello), name="gateway-heartbeat")
        coordinator = asyncio.create_task(
            self._coordinate(inbound, outbound, hello), name="gateway-coordinator"
        )
        stopper = asyncio.create_task(self._stop_event.wait())
        tasks = (reader, writer, heartbeat, coordinator, stopper)
        try:
            done, _ = await asyncio.wait(
                {writer, heartbeat, coordinator, stopper},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if stopper in done:
                return RestartReason.SHUTDOWN
            if coordinator in done:
                return coordinator.result()
            if heartbeat in done:
                heartbeat.result()
            raise TransportError(f"Gateway write failed: {writer.exception()}")
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._ws = None
            if not ws.closed:
                try:
                    await ws.close()
                except Exception as e:
                    logger.debug(f"Error closing gateway socket: {e}")

    async def _reader(self, ws, inbound: asyncio.Queue) -> None:
        """Decode frames into ``inbound``, blocking while it is full.

        Heartbeat ACKs are applied here and never queued.
        """
        try:
            while True:
                msg = await ws.receive()
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        envelope = decode_frame(msg.data)
                    except ProtocolError as e:
                        logger.warning(f"Dropping gateway frame: {e}")
                        continue
                    if envelope.opcode == Opcode.HEARTBEAT_ACK:
                        self.session_state.heartbeat_acked = True
                        continue
                    await inbound.put(envelope)
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING,
                                  aiohttp.WSMsgType.CLOSED):
                    code = msg.data if isinstance(msg.data, int) else getattr(ws, "close_code", None)
                    await inbound.put(_TransportFailure("socket closed", code))
                    return
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    await inbound.put(_TransportFailure(f"socket error: {msg.data}"))
                    return
                else:
                    logger.debug(f"Ignoring gateway message of type {msg.type}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await inbound.put(_TransportFailure(f"read failed: {e}"))

    async def _writer(self, ws, outbound: asyncio.Queue) -> None:
        while True:
            frame = await outbound.get()
            await ws.send_str(frame)

    async def _heartbeat(self, outbound: asyncio.Queue, hello: asyncio.Event) -> None:
        """Beat every interval once Hello arrives; the first beat is jittered.

        Raises:
            HeartbeatTimeout: The previous heartbeat was never acknowledged.
        """
        await hello.wait()
        session = self.session_state
        interval = session.heartbeat_interval_ms / 1000.0
        await asyncio.sleep(interval * self._rng.random())
        while True:
            if not session.heartbeat_acked:
                raise HeartbeatTimeout(f"No heartbeat ACK within {interval:.1f}s")
            self._send_heartbeat(outbound)
            await asyncio.sleep(interval)

    async def _coordinate(self, inbound: asyncio.Queue, outbound: asyncio.Queue,
                          hello: asyncio.Event) -> RestartReason:
        """Handle inbound frames in order for one connection."""
        session = self.session_state
        self.state = ConnectionState.AWAIT_HELLO

        while True:
            item = await inbound.get()

            if isinstance(item, _TransportFailure):
                self._handle_close_code(item.close_code)
                raise TransportError(f"Gateway {item.reason} (code {item.close_code})")

            envelope: GatewayEnvelope = item
            op = envelope.opcode

            if op == Opcode.HELLO:
                if self.state in (ConnectionState.ACTIVE, ConnectionState.RESUMING):
                    logger.warning("Second Hello on an established connection; starting fresh")
                    session.reset()
                    return RestartReason.SECOND_HELLO
                try:
                    interval_ms = hello_interval(envelope)
                except ProtocolError as e:
                    logger.warning(f"Dropping gateway frame: {e}")
                    continue
                session.heartbeat_interval_ms = interval_ms
                session.heartbeat_acked = True
                self._send_hello_reply(outbound)
                hello.set()
                continue

            if self.state == ConnectionState.AWAIT_HELLO:
                logger.debug(f"Ignoring opcode {op.name} received before Hello")
                continue

            if op == Opcode.HEARTBEAT:
                self._send_heartbeat(outbound)
            elif op == Opcode.RECONNECT:
                logger.info("Server requested reconnect; will resume")
                return RestartReason.RECONNECT
            elif op == Opcode.INVALID_SESSION:
                logger.warning("Session invalidated by server; will identify again")
                session.reset()
                return RestartReason.INVALID_SESSION
            elif envelope.is_dispatch:
                if not await self._handle_dispatch(envelope):
                    return RestartReason.SEQUENCE_GAP
            else:
                logger.debug(f"Ignoring unexpected opcode {op.name}")

    # ------------------------------------------------------------------
    # Frame handling
    # ------------------------------------------------------------------

    def _send_heartbeat(self, outbound: asyncio.Queue) -> None:
        self.session_state.heartbeat_acked = False
        outbound.put_nowait(heartbeat_frame(self.session_state.sequence))

    def _send_hello_reply(self, outbound: asyncio.Queue) -> None:
        session = self.session_state
        token = self.settings.user_token or ""
        if session.can_resume:
            logger.info(f"Resuming session {session.session_id} at seq {session.sequence}")
            outbound.put_nowait(resume_frame(token, session.session_id, session.sequence))
            self.state = ConnectionState.RESUMING
        else:
            logger.info("Identifying with gateway")
            session.reset()
            outbound.put_nowait(identify_frame(token, self._properties))
            self.state = ConnectionState.ACTIVE

    async def _handle_dispatch(self, envelope: GatewayEnvelope) -> bool:
        """Track sequence/session and forward the event.

        Returns:
            ``False`` when a sequence gap was detected and the event was
            withheld.
        """
        session = self.session_state
        seq = envelope.sequence
        current = session.sequence

        if seq is not None and current is not None and seq > current + 1:
            logger.warning(f"Sequence gap: expected {current + 1}, got {seq}; resuming")
            return False

        if envelope.event_name == "READY" and isinstance(envelope.payload, dict):
            session.session_id = envelope.payload.get("session_id")
            session.resume_url = envelope.payload.get("resume_gateway_url")
            logger.info(f"✅ Gateway ready, session {session.session_id}")
            self.state = ConnectionState.ACTIVE
        elif envelope.event_name == "RESUMED":
            logger.info("✅ Session resumed")
            self.state = ConnectionState.ACTIVE

        await self.events.put(envelope)
        # Advanced only once delivered so a Resume replays a stalled event
        if seq is not None:
            current = session.sequence
            session.sequence = seq if current is None else max(current, seq)
        return True

    def _handle_close_code(self, code: Optional[int]) -> None:
        if code == AUTH_FAILED_CLOSE_CODE:
            logger.critical("Gateway rejected the token (close code 4004); check user_token")
        if code in NON_RESUMABLE_CLOSE_CODES:
            logger.info(f"Close code {code} invalidates the session")
            self.session_state.reset()
