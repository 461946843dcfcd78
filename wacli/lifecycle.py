"""Connection lifecycle: one active socket generation at a time"""

import asyncio
import functools
import itertools
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from rich.console import Console

from .commands import CommandConsole
from .config import AUTH_FOLDER, DEBUG
from .connection import (
    WASocket, ConnectionUpdate, DisconnectReason,
    CREDS_UPDATE, MESSAGES_UPSERT, CONNECTION_UPDATE,
)
from .messages import MessageListener
from .output import console as default_console, err_console as default_err_console, render_qr
from .storage import AuthState, use_auth_state


class LifecycleState(Enum):
    BOOTSTRAPPING = "bootstrapping"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


# Session.state values
CONNECTING = "connecting"
OPEN = "open"
CLOSED = "closed"


@dataclass
class Session:
    """One connection generation and the listener handles bound to it"""
    generation: int
    socket: WASocket
    state: str = CONNECTING
    subscriptions: list[Callable[[], None]] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.state == OPEN

    @property
    def listeners_bound(self) -> bool:
        return bool(self.subscriptions)


class LifecycleManager:
    """Owns the active session, the console and the shutdown flag.

    Constructed once per process. Reconnecting replaces `session` with a new
    generation after unbinding every listener of the previous one, so events
    are never delivered twice. `shutdown()` is the single teardown path; it
    ends by setting a completion signal that the entry point waits on.
    """

    def __init__(
        self,
        auth_folder: Path = AUTH_FOLDER,
        auth_loader: Callable[[Path], Awaitable[AuthState]] = use_auth_state,
        socket_factory: Callable[[AuthState], WASocket] = WASocket,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.auth_folder = Path(auth_folder)
        self._auth_loader = auth_loader
        self._socket_factory = socket_factory
        self.console = console or default_console
        self.err_console = err_console or default_err_console

        self.state = LifecycleState.BOOTSTRAPPING
        self.session: Optional[Session] = None
        self.auth: Optional[AuthState] = None
        self.is_shutting_down = False
        self._generations = itertools.count(1)
        self._closed = asyncio.Event()
        self._shutdown_task: Optional[asyncio.Task] = None

        self.listener = MessageListener(self.console)
        self.command_console = CommandConsole(self, console=self.console)

    @property
    def is_open(self) -> bool:
        return self.session is not None and self.session.is_open

    # === Session Generations ===

    async def start(self):
        """Start a new session generation, replacing the previous one"""
        previous = self.session
        if previous is not None:
            self._unbind(previous)

        if self.auth is None:
            self.auth = await self._auth_loader(self.auth_folder)

        socket = self._socket_factory(self.auth)
        session = Session(generation=next(self._generations), socket=socket)
        session.subscriptions = [
            socket.on(CREDS_UPDATE, self._on_creds_update),
            socket.on(MESSAGES_UPSERT, self.listener.handle_upsert),
            socket.on(CONNECTION_UPDATE, functools.partial(self._on_connection_update, session)),
        ]
        self.session = session
        self.state = LifecycleState.CONNECTING

        await socket.connect()

    def _unbind(self, session: Session):
        """Remove every listener a session registered"""
        for unsubscribe in session.subscriptions:
            try:
                unsubscribe()
            except Exception as e:
                self.err_console.print(f"Failed to clean up previous listeners: {e}")
        session.subscriptions = []

    # === Event Handlers ===

    async def _on_creds_update(self, changes: dict):
        await self.auth.apply_update(changes)

    async def _on_connection_update(self, session: Session, update: ConnectionUpdate):
        if update.qr:
            self.console.print("Scan the QR code to link your WhatsApp account:")
            render_qr(update.qr, self.console)

        if update.connection == 'open':
            session.state = OPEN
            self.state = LifecycleState.OPEN
            self.console.print("Connected to WhatsApp! You can start sending messages.")
            self.command_console.start()

        elif update.connection == 'close':
            session.state = CLOSED
            if self.is_shutting_down:
                return
            await self._handle_close(update)

    async def _handle_close(self, update: ConnectionUpdate):
        self.state = LifecycleState.CLOSING
        error = update.last_disconnect
        status_code = error.status_code if error else None

        if status_code == DisconnectReason.LOGGED_OUT:
            self.state = LifecycleState.TERMINATED
            self.err_console.print(
                f"Connection closed: logged out from WhatsApp. "
                f"Delete the '{self.auth_folder}' folder and run again."
            )
            await self.shutdown()
            return

        self.state = LifecycleState.RECONNECTING
        self.err_console.print("Connection closed. Attempting to reconnect...")
        try:
            await self.start()
        except Exception as e:
            self.err_console.print(f"Failed to reconnect: {e}")
            if DEBUG:
                self.err_console.print_exception()

    # === Shutdown ===

    async def shutdown(self):
        """Close the console, the socket and the store; runs once"""
        if self.is_shutting_down:
            return

        self.is_shutting_down = True
        self.console.print("\nShutting down...")
        try:
            for close in (self.command_console.close, self._close_socket, self._close_store):
                try:
                    await close()
                except Exception as e:
                    self.err_console.print(f"Error while closing connection: {e}")
        finally:
            self.state = LifecycleState.TERMINATED
            self._closed.set()

    def request_shutdown(self):
        """Schedule shutdown from a signal handler"""
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self.shutdown())

    async def _close_socket(self):
        # Closes the transport only; logging out would invalidate the credentials
        if self.session is not None:
            await self.session.socket.close()

    async def _close_store(self):
        if self.auth is not None:
            await self.auth.store.close()

    async def wait_closed(self):
        """Wait until shutdown has completed"""
        await self._closed.wait()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()
