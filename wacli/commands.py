"""Operator command console"""

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional, Union

from rich.console import Console
from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout

from .config import JID_SUFFIX, PROMPT, DEBUG
from .output import console as default_console

MSG_USAGE = "Usage: /msg <phone_number> <message>"


@dataclass
class SendCommand:
    address: str
    text: str


@dataclass
class HelpCommand:
    pass


@dataclass
class QuitCommand:
    pass


@dataclass
class UsageCommand:
    """A known command with missing arguments"""
    usage: str


@dataclass
class UnknownCommand:
    raw: str


Command = Union[SendCommand, HelpCommand, QuitCommand, UsageCommand, UnknownCommand]


def parse_command(line: str) -> Optional[Command]:
    """Parse one input line; None for a blank line"""
    trimmed = line.strip()
    if not trimmed:
        return None

    # /help and /quit take no arguments and must match exactly
    if trimmed == '/help':
        return HelpCommand()

    if trimmed == '/quit':
        return QuitCommand()

    parts = trimmed.split(maxsplit=2)
    if parts[0] == '/msg':
        if len(parts) < 3:
            return UsageCommand(MSG_USAGE)
        address, text = parts[1], parts[2].strip()
        if not address or not text:
            return UsageCommand(MSG_USAGE)
        return SendCommand(address=address, text=text)

    return UnknownCommand(raw=trimmed)


HELP_TEXT = """
WhatsApp CLI commands:
  /msg <phone_number> <message>  Send a WhatsApp message
  /help                          Show this help message
  /quit                          Close the connection and exit
  Ctrl+C                         Quit immediately
"""


class CommandConsole:
    """Reads operator commands; started at most once per process"""

    def __init__(
        self,
        manager,
        console: Optional[Console] = None,
        session_factory: Callable[[], PromptSession] = PromptSession,
    ):
        self.manager = manager
        self.console = console or default_console
        self._session_factory = session_factory
        self.started = False
        self._task: Optional[asyncio.Task] = None

    def start(self):
        """Start the prompt loop unless it is already running"""
        if self.started:
            return
        self.started = True
        self._task = asyncio.ensure_future(self._run())

    async def close(self):
        """Stop reading input"""
        task = self._task
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def print_help(self):
        self.console.print(HELP_TEXT)

    async def _run(self):
        """Main input loop"""
        session = self._session_factory()

        self.print_help()

        with patch_stdout():
            while not self.manager.is_shutting_down:
                try:
                    # The process-wide SIGINT handler stays installed between prompts
                    line = await session.prompt_async(PROMPT, handle_sigint=False)
                except (EOFError, KeyboardInterrupt):
                    # Ctrl+D or Ctrl+C at the prompt
                    break

                try:
                    await self.handle_line(line)
                except Exception as e:
                    self.console.print(f"Error: {e}")
                    if DEBUG:
                        self.console.print_exception()

        await self.manager.shutdown()

    async def handle_line(self, line: str):
        """Parse and execute one input line"""
        command = parse_command(line)

        if command is None:
            return

        if isinstance(command, HelpCommand):
            self.print_help()

        elif isinstance(command, QuitCommand):
            await self.manager.shutdown()

        elif isinstance(command, UsageCommand):
            self.console.print(command.usage)

        elif isinstance(command, SendCommand):
            await self._cmd_send_message(command.address, command.text)

        else:
            self.console.print("Unknown command. Type /help to see available commands.")

    async def _cmd_send_message(self, address: str, text: str):
        """Send a text message through the active session"""
        session = self.manager.session
        if session is None or not session.is_open or not session.socket.is_connected:
            self.console.print("Socket is not ready yet. Please wait for the connection to open.")
            return

        jid = f"{address}{JID_SUFFIX}"
        try:
            await session.socket.send_message(jid, {'text': text})
            self.console.print(f"Message sent to {address}")
        except Exception as e:
            self.console.print(f"Failed to send message to {address}: {e}")
