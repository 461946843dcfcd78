#!/usr/bin/env python3
"""Unit tests for the connection lifecycle and listener rebinding"""

import asyncio
import os
import signal
import sys
from contextlib import nullcontext
from unittest.mock import patch

import pytest

from wacli import cli
from wacli.connection import (
    ConnectionUpdate, DisconnectReason, MessagesUpsert,
    CREDS_UPDATE, MESSAGES_UPSERT, CONNECTION_UPDATE,
)
from wacli.lifecycle import LifecycleState

from fakes import make_manager, output_of

NOTIFY = MessagesUpsert(
    messages=[{'key': {'remoteJid': '15551234567@s.whatsapp.net'}, 'message': {'conversation': 'ping'}}],
    type='notify',
)


async def test_start_binds_one_listener_set():
    """The first generation loads credentials and binds each handler once."""
    print("\n=== Test 1: First Generation ===")

    manager, sockets, loader, _, _, _ = make_manager()
    await manager.start()

    assert len(sockets) == 1
    socket = sockets[0]
    assert manager.session.generation == 1
    assert manager.session.socket is socket
    assert manager.session.listeners_bound
    assert socket.connect_calls == 1
    for event in (CREDS_UPDATE, MESSAGES_UPSERT, CONNECTION_UPDATE):
        assert socket.listener_count(event) == 1, f"{event} bound {socket.listener_count(event)} times"
    assert manager.state == LifecycleState.CONNECTING
    loader.assert_awaited_once()
    print("✓ generation 1 bound, credentials loaded once")
    print("✓ Test 1 passed!\n")


async def test_reconnect_replaces_generation():
    """A transient close unbinds the old socket and starts generation 2."""
    print("=== Test 2: Reconnect ===")

    with patch('wacli.commands.patch_stdout', nullcontext):
        manager, sockets, loader, _, out, err = make_manager()
        await manager.start()
        first = manager.session
        await sockets[0].open()
        assert manager.is_open

        await sockets[0].drop(DisconnectReason.CONNECTION_LOST)

        assert len(sockets) == 2
        assert manager.session is not first
        assert manager.session.generation == 2
        assert first.state == 'closed'
        assert not first.listeners_bound
        assert sockets[0].listener_count() == 0
        assert sockets[1].listener_count() == 3
        assert manager.session.socket.auth is first.socket.auth
        loader.assert_awaited_once()
        assert "Attempting to reconnect" in output_of(err)
        print("✓ old generation unbound, new generation bound, credentials reused")

        # Events on the old socket no longer reach anyone
        await sockets[0].emit(MESSAGES_UPSERT, NOTIFY)
        assert "New message" not in output_of(out)
        await sockets[1].emit(MESSAGES_UPSERT, NOTIFY)
        assert output_of(out).count("New message from 15551234567: ping") == 1
        print("✓ inbound message delivered exactly once")

        await manager.command_console.close()
    print("✓ Test 2 passed!\n")


async def test_close_without_error_reconnects():
    """A close with no disconnect error is treated as transient."""
    print("=== Test 3: Close Without Error ===")

    manager, sockets, _, _, _, _ = make_manager()
    await manager.start()
    await sockets[0].drop()

    assert manager.session.generation == 2
    assert manager.state == LifecycleState.CONNECTING
    assert not manager.is_shutting_down
    print("✓ reconnected")
    print("✓ Test 3 passed!\n")


async def test_reconnect_failure_is_not_retried():
    """A failed reconnect is reported and the process stays up."""
    print("=== Test 4: Reconnect Failure ===")

    manager, sockets, _, _, _, err = make_manager(fail_connect_from=2)
    await manager.start()
    await sockets[0].drop(DisconnectReason.CONNECTION_CLOSED)

    assert len(sockets) == 2
    assert sockets[1].connect_calls == 1
    assert "Failed to reconnect: gateway unreachable" in output_of(err)
    assert not manager.is_shutting_down
    assert not manager.closed
    print("✓ failure reported, no further attempts")
    print("✓ Test 4 passed!\n")


async def test_logged_out_shuts_down_once():
    """Repeated loggedOut closes terminate and tear down exactly once."""
    print("=== Test 5: Logged Out ===")

    manager, sockets, _, _, out, err = make_manager()
    await manager.start()
    auth = manager.auth

    await asyncio.gather(
        sockets[0].drop(DisconnectReason.LOGGED_OUT),
        sockets[0].drop(DisconnectReason.LOGGED_OUT),
        sockets[0].drop(DisconnectReason.LOGGED_OUT),
    )

    assert manager.state == LifecycleState.TERMINATED
    assert manager.closed
    assert len(sockets) == 1, "no reconnect after loggedOut"
    assert sockets[0].close_calls == 1
    auth.store.close.assert_awaited_once()
    assert output_of(out).count("Shutting down...") == 1
    assert output_of(err).count("logged out from WhatsApp") == 1
    assert "auth-test" in output_of(err)
    print("✓ one teardown, remediation printed once")
    print("✓ Test 5 passed!\n")


async def test_close_during_shutdown_is_ignored():
    """Once shutting down, close events never reconnect."""
    print("=== Test 6: Close During Shutdown ===")

    manager, sockets, _, _, _, _ = make_manager()
    await manager.start()
    await manager.shutdown()

    await sockets[0].drop()
    await sockets[0].drop(DisconnectReason.LOGGED_OUT)

    assert len(sockets) == 1
    assert sockets[0].close_calls == 1
    print("✓ no reconnect, no second teardown")
    print("✓ Test 6 passed!\n")


async def test_console_started_once_across_reconnects():
    """Every open starts the console, but only the first one counts."""
    print("=== Test 7: Console Across Reconnects ===")

    with patch('wacli.commands.patch_stdout', nullcontext):
        manager, sockets, _, sessions, _, _ = make_manager()
        await manager.start()
        await sockets[0].open()
        await sockets[0].drop()
        await sockets[1].open()
        await sockets[1].drop()
        await sockets[2].open()
        await asyncio.sleep(0.01)

        assert manager.session.generation == 3
        assert len(sessions) == 1, f"expected one prompt loop, got {len(sessions)}"
        print("✓ 3 opens -> 1 prompt loop")

        await manager.shutdown()
        assert manager.command_console._task.done()
    print("✓ Test 7 passed!\n")


async def test_qr_and_creds_update():
    """QR payloads are rendered and credential updates are persisted."""
    print("=== Test 8: QR and Credentials ===")

    manager, sockets, _, _, out, _ = make_manager()
    await manager.start()

    await sockets[0].emit(CONNECTION_UPDATE, ConnectionUpdate(qr="2@pairing-ref,noise,identity,adv"))
    text = output_of(out)
    assert "Scan the QR code to link your WhatsApp account:" in text
    assert len(text.splitlines()) > 5
    assert manager.state == LifecycleState.CONNECTING
    print("✓ QR rendered, state unchanged")

    await sockets[0].emit(CREDS_UPDATE, {'registered': True, 'keys': {'pre-key': {'1': {'k': 'v'}}}})
    manager.auth.save_creds.assert_awaited_once()
    manager.auth.store.set_keys.assert_awaited_once_with({'pre-key': {'1': {'k': 'v'}}})
    assert manager.auth.credentials.registered
    print("✓ creds.update persisted")
    print("✓ Test 8 passed!\n")


async def test_repeated_interrupts_tear_down_once():
    """Interrupts arriving before /quit is read cancel the prompt and tear down once."""
    print("=== Test 9: Repeated Interrupts ===")

    with patch('wacli.commands.patch_stdout', nullcontext):
        manager, sockets, _, _, out, _ = make_manager(lines=["/quit"])
        await manager.start()
        await sockets[0].open()
        manager.request_shutdown()
        manager.request_shutdown()
        await asyncio.wait_for(manager.wait_closed(), timeout=1)
        await asyncio.sleep(0.01)

    assert sockets[0].close_calls == 1
    assert output_of(out).count("Shutting down...") == 1
    assert manager.command_console._task.done()
    print("✓ one teardown")
    print("✓ Test 9 passed!\n")


async def test_run_exit_codes():
    """The entry point returns 0 after a graceful quit and 1 on bootstrap failure."""
    print("=== Test 10: Exit Codes ===")

    with patch('wacli.commands.patch_stdout', nullcontext):
        manager, sockets, _, _, _, _ = make_manager(lines=["/quit"], open_on_connect=True)
        with patch.object(cli, 'LifecycleManager', return_value=manager):
            code = await asyncio.wait_for(cli.run(), timeout=1)
        assert code == 0
        assert sockets[0].close_calls == 1
        print("✓ /quit -> 0")

    manager, _, _, _, _, _ = make_manager(fail_connect_from=1)
    with patch.object(cli, 'LifecycleManager', return_value=manager):
        code = await asyncio.wait_for(cli.run(), timeout=1)
    assert code == 1
    assert manager.closed
    print("✓ bootstrap failure -> 1")
    print("✓ Test 10 passed!\n")


class CountingEvent(asyncio.Event):
    """asyncio.Event that counts set() calls"""

    def __init__(self):
        super().__init__()
        self.set_calls = 0

    def set(self):
        self.set_calls += 1
        super().set()


async def test_interrupt_during_quit():
    """SIGINT arriving while /quit is tearing down joins that teardown."""
    print("=== Test 11: Interrupt During Quit ===")

    with patch('wacli.commands.patch_stdout', nullcontext):
        manager, sockets, _, _, out, _ = make_manager(lines=["/quit"])
        manager._closed = CountingEvent()
        await manager.start()
        socket = sockets[0]
        socket.close_gate = asyncio.Event()
        await socket.open()

        # /quit is now inside shutdown(), held at the socket close
        await asyncio.wait_for(socket.close_started.wait(), timeout=1)
        assert manager.is_shutting_down and not manager.closed
        print("✓ /quit teardown in progress")

        manager.request_shutdown()
        manager.request_shutdown()
        await asyncio.sleep(0.01)
        assert manager._shutdown_task.done()
        assert not manager.closed
        print("✓ interrupt returned without a second teardown")

        socket.close_gate.set()
        await asyncio.wait_for(manager.wait_closed(), timeout=1)
        await asyncio.wait_for(manager.command_console._task, timeout=1)

    assert socket.close_calls == 1
    manager.auth.store.close.assert_awaited_once()
    assert output_of(out).count("Shutting down...") == 1
    assert manager._closed.set_calls == 1
    print("✓ one teardown, one completion signal")
    print("✓ Test 11 passed!\n")


@pytest.mark.skipif(sys.platform == 'win32', reason="needs loop signal handlers")
async def test_run_handles_sigint():
    """A real SIGINT during run() goes through shutdown and exits 0."""
    print("=== Test 12: SIGINT Through run() ===")

    with patch('wacli.commands.patch_stdout', nullcontext):
        manager, sockets, _, _, out, _ = make_manager(block=True, open_on_connect=True)
        with patch.object(cli, 'LifecycleManager', return_value=manager):
            task = asyncio.ensure_future(cli.run())
            await asyncio.sleep(0.05)
            assert manager.is_open and not task.done()

            os.kill(os.getpid(), signal.SIGINT)
            code = await asyncio.wait_for(task, timeout=1)

    assert code == 0
    assert sockets[0].close_calls == 1
    assert output_of(out).count("Shutting down...") == 1
    assert manager.command_console._task.done()
    assert signal.getsignal(signal.SIGINT) is signal.default_int_handler
    print("✓ SIGINT -> shutdown -> 0, handler removed afterwards")
    print("✓ Test 12 passed!\n")


async def main():
    """Run all tests"""
    print("\n" + "=" * 60)
    print("  UNIT TESTS: Connection Lifecycle")
    print("=" * 60)

    try:
        await test_start_binds_one_listener_set()
        await test_reconnect_replaces_generation()
        await test_close_without_error_reconnects()
        await test_reconnect_failure_is_not_retried()
        await test_logged_out_shuts_down_once()
        await test_close_during_shutdown_is_ignored()
        await test_console_started_once_across_reconnects()
        await test_qr_and_creds_update()
        await test_repeated_interrupts_tear_down_once()
        await test_run_exit_codes()
        await test_interrupt_during_quit()
        if sys.platform != 'win32':
            await test_run_handles_sigint()

        print("\n" + "=" * 60)
        print("  🎉 ALL TESTS PASSED!")
        print("=" * 60 + "\n")
    except Exception as e:
        print(f"\n❌ Test failed: {e}")
        import traceback
        traceback.print_exc()
        exit(1)


if __name__ == "__main__":
    asyncio.run(main())
