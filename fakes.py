"""Test doubles shared by the test modules"""

import asyncio
from io import StringIO
from unittest.mock import AsyncMock, MagicMock

from rich.console import Console

from wacli.commands import CommandConsole
from wacli.connection import ConnectionUpdate, DisconnectError, CONNECTION_UPDATE
from wacli.crypto import create_credentials
from wacli.lifecycle import LifecycleManager
from wacli.storage import AuthState


def capture_console() -> Console:
    return Console(file=StringIO(), force_terminal=False, no_color=True,
                   markup=False, highlight=False, emoji=False, width=200)


def output_of(console: Console) -> str:
    return console.file.getvalue()


class FakeSocket:
    """Stands in for WASocket; records calls and lets tests emit events"""

    def __init__(self, auth, fail_connect=False, open_on_connect=False):
        self.auth = auth
        self.fail_connect = fail_connect
        self.open_on_connect = open_on_connect
        self.is_connected = False
        self.connect_calls = 0
        self.close_calls = 0
        self.sent = []
        self.send_error = None
        # Set close_gate to hold close() open until the test releases it
        self.close_gate = None
        self.close_started = asyncio.Event()
        self._listeners = {}

    def on(self, event, callback):
        self._listeners.setdefault(event, []).append(callback)

        def unsubscribe():
            self._listeners[event].remove(callback)
        return unsubscribe

    def listener_count(self, event=None):
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(callbacks) for callbacks in self._listeners.values())

    async def connect(self):
        self.connect_calls += 1
        if self.fail_connect:
            raise ConnectionError("gateway unreachable")
        self.is_connected = True
        if self.open_on_connect:
            await self.emit(CONNECTION_UPDATE, ConnectionUpdate(connection='open'))

    async def close(self):
        self.close_calls += 1
        self.close_started.set()
        if self.close_gate is not None:
            await self.close_gate.wait()
        self.is_connected = False

    async def send_message(self, jid, content):
        if self.send_error:
            raise self.send_error
        self.sent.append((jid, content))
        return {'status': 'ok'}

    async def emit(self, event, data):
        for callback in list(self._listeners.get(event, [])):
            result = callback(data)
            if asyncio.iscoroutine(result):
                await result

    async def open(self):
        self.is_connected = True
        await self.emit(CONNECTION_UPDATE, ConnectionUpdate(connection='open'))

    async def drop(self, status_code=None):
        self.is_connected = False
        error = DisconnectError(status_code=status_code) if status_code is not None else None
        await self.emit(CONNECTION_UPDATE, ConnectionUpdate(connection='close', last_disconnect=error))


class FakePromptSession:
    """Returns queued lines, then raises EOFError or blocks forever"""

    def __init__(self, lines=(), block=False):
        self.lines = list(lines)
        self.block = block
        self.prompts = 0

    async def prompt_async(self, message="", **kwargs):
        self.prompts += 1
        await asyncio.sleep(0)
        if self.lines:
            return self.lines.pop(0)
        if self.block:
            await asyncio.Event().wait()
        raise EOFError()


def fake_auth_state() -> AuthState:
    store = MagicMock()
    store.close = AsyncMock()
    store.set_keys = AsyncMock()
    return AuthState(credentials=create_credentials(), save_creds=AsyncMock(), store=store)


def make_manager(lines=(), block=True, fail_connect_from=None, open_on_connect=False):
    """Build a LifecycleManager wired to fakes.

    Returns (manager, sockets, loader, sessions, out, err). `sockets` lists
    every FakeSocket in creation order; generations at or after
    `fail_connect_from` fail to connect.
    """
    out = capture_console()
    err = capture_console()
    sockets = []
    sessions = []
    loader = AsyncMock(side_effect=lambda folder: fake_auth_state())

    def socket_factory(auth):
        generation = len(sockets) + 1
        fail = fail_connect_from is not None and generation >= fail_connect_from
        socket = FakeSocket(auth, fail_connect=fail, open_on_connect=open_on_connect)
        sockets.append(socket)
        return socket

    def session_factory():
        session = FakePromptSession(lines, block=block)
        sessions.append(session)
        return session

    manager = LifecycleManager(
        "auth-test",
        auth_loader=loader,
        socket_factory=socket_factory,
        console=out,
        err_console=err,
    )
    manager.command_console = CommandConsole(manager, console=out, session_factory=session_factory)
    return manager, sockets, loader, sessions, out, err
