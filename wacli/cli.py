"""wacli - command-line WhatsApp client"""

import asyncio
import signal
import sys
from pathlib import Path

from .config import AUTH_FOLDER, DEBUG
from .lifecycle import LifecycleManager
from .output import err_console


async def run(auth_folder: Path = AUTH_FOLDER) -> int:
    """Connect, serve commands until shutdown, and return the exit code"""
    manager = LifecycleManager(auth_folder)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, manager.request_shutdown)
        handles_sigint = True
    except (NotImplementedError, RuntimeError):
        # Windows or a non-main thread; KeyboardInterrupt reaches main()
        handles_sigint = False

    try:
        try:
            await manager.start()
        except Exception as e:
            err_console.print(f"Failed to start WhatsApp CLI: {e}")
            if DEBUG:
                err_console.print_exception()
            await manager.shutdown()
            return 1

        await manager.wait_closed()
        return 0
    finally:
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)


def main():
    """Entry point"""
    try:
        code = asyncio.run(run())
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
