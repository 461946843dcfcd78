"""Socket.io adapter for the messaging gateway"""

import asyncio
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Optional

import socketio
from socketio.exceptions import BadNamespaceError, TimeoutError as AckTimeoutError

from .config import SERVER_URL, SEND_TIMEOUT, BROWSER
from .output import err_console
from .storage import AuthState


class DisconnectReason(IntEnum):
    """Status codes carried by a close event"""
    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411


class SendError(Exception):
    """The gateway refused or failed to deliver an outbound message"""


@dataclass
class DisconnectError:
    """Why the connection closed"""
    status_code: Optional[int] = None
    message: str = ""

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'DisconnectError':
        data = data or {}
        return cls(status_code=data.get('statusCode'), message=data.get('message') or "")


@dataclass
class ConnectionUpdate:
    """Event emitted on connection.update"""
    connection: Optional[str] = None  # 'open', 'close' or None
    last_disconnect: Optional[DisconnectError] = None
    qr: Optional[str] = None


@dataclass
class MessagesUpsert:
    """Event emitted on messages.upsert"""
    messages: list[dict] = field(default_factory=list)
    type: str = "notify"  # 'notify' for live messages, 'append' for history sync


# Type for event callbacks
EventCallback = Callable[[Any], Any]

CREDS_UPDATE = 'creds.update'
MESSAGES_UPSERT = 'messages.upsert'
CONNECTION_UPDATE = 'connection.update'


class WASocket:
    """Async Socket.io client for one connection generation"""

    def __init__(self, auth: AuthState, url: str = SERVER_URL):
        self.auth = auth
        self.url = url
        # Reconnection is driven by the lifecycle manager, not the transport
        self.sio = socketio.AsyncClient(reconnection=False)
        self._listeners: dict[str, list[EventCallback]] = {}
        self._connected = False
        self._pending_error: Optional[DisconnectError] = None
        self._setup_handlers()

    def _setup_handlers(self):
        """Set up Socket.io event handlers"""

        @self.sio.event
        async def connect():
            self._connected = True
            self._pending_error = None
            await self._emit_event(CONNECTION_UPDATE, ConnectionUpdate(connection='open'))

        @self.sio.event
        async def disconnect(reason=None):
            self._connected = False
            error = self._pending_error
            self._pending_error = None
            await self._emit_event(CONNECTION_UPDATE, ConnectionUpdate(
                connection='close',
                last_disconnect=error,
            ))

        @self.sio.on('qr')
        async def on_qr(data):
            await self._emit_event(CONNECTION_UPDATE, ConnectionUpdate(qr=data.get('qr')))

        @self.sio.on('creds')
        async def on_creds(data):
            await self._emit_event(CREDS_UPDATE, data or {})

        @self.sio.on('messages')
        async def on_messages(data):
            await self._emit_event(MESSAGES_UPSERT, MessagesUpsert(
                messages=data.get('messages') or [],
                type=data.get('type', 'notify'),
            ))

        @self.sio.on('close-reason')
        async def on_close_reason(data):
            self._pending_error = DisconnectError.from_dict(data)

        @self.sio.on('logged-out')
        async def on_logged_out(data):
            error = DisconnectError.from_dict(data)
            error.status_code = DisconnectReason.LOGGED_OUT
            self._pending_error = error

    async def connect(self):
        """Connect to the gateway presenting our credentials"""
        await self.sio.connect(
            self.url,
            auth={
                'creds': self.auth.credentials.public_dict(),
                'browser': list(BROWSER),
            },
            transports=['websocket'],
        )

    async def close(self):
        """Close the transport without logging out; credentials stay valid"""
        await self.sio.disconnect()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    # === Sending Methods ===

    async def send_message(self, jid: str, content: dict) -> dict:
        """Send a message and wait for the gateway's acknowledgement"""
        try:
            ack = await self.sio.call('message', {
                'to': jid,
                'content': content,
            }, timeout=SEND_TIMEOUT)
        except AckTimeoutError:
            raise SendError(f"no acknowledgement after {SEND_TIMEOUT:g}s")
        except BadNamespaceError:
            raise SendError("not connected")

        if not isinstance(ack, dict) or ack.get('error'):
            error = ack.get('error') if isinstance(ack, dict) else ack
            raise SendError(str(error or "rejected by server"))
        return ack

    # === Event Listener Management ===

    def on(self, event: str, callback: EventCallback) -> Callable[[], None]:
        """Subscribe to an event. Returns unsubscribe function."""
        if event not in self._listeners:
            self._listeners[event] = []
        self._listeners[event].append(callback)

        def unsubscribe():
            self._listeners[event].remove(callback)
        return unsubscribe

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(callbacks) for callbacks in self._listeners.values())

    async def _emit_event(self, event: str, data: Any):
        """Emit event to all listeners"""
        # Handlers may unsubscribe while we dispatch
        # A failing handler is reported here and the remaining listeners still run
        for callback in list(self._listeners.get(event, [])):
            try:
                result = callback(data)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                err_console.print(f"Error in event handler for {event}: {e}")
