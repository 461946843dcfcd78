"""Inbound message handling"""

from dataclasses import dataclass
from typing import Callable, Optional

from rich.console import Console

from .config import JID_SUFFIX
from .connection import MessagesUpsert
from .output import console as default_console


def _field(*path: str) -> Callable[[dict], Optional[str]]:
    """Build an extractor that follows `path` through nested message dicts"""
    def extract(message: dict) -> Optional[str]:
        value = message
        for name in path:
            if not isinstance(value, dict):
                return None
            value = value.get(name)
        return value if isinstance(value, str) else None
    extract.__name__ = "_".join(path)
    return extract


# Tried in order; the first non-empty string wins, even if it is all whitespace
TEXT_EXTRACTORS: list[Callable[[dict], Optional[str]]] = [
    _field('conversation'),
    _field('extendedTextMessage', 'text'),
    _field('imageMessage', 'caption'),
    _field('videoMessage', 'caption'),
    _field('documentMessage', 'caption'),
    _field('buttonsResponseMessage', 'selectedButtonId'),
    _field('templateButtonReplyMessage', 'selectedId'),
]


def get_message_text(envelope: Optional[dict]) -> Optional[str]:
    """Extract displayable text from a message envelope, or None for non-text messages"""
    if not envelope or not envelope.get('message'):
        return None

    message = envelope['message']
    for extractor in TEXT_EXTRACTORS:
        text = extractor(message)
        if text:
            return text.strip() or None
    return None


def jid_to_address(jid: str) -> str:
    """Strip the user-domain suffix for display"""
    if jid.endswith(JID_SUFFIX):
        return jid[:-len(JID_SUFFIX)]
    return jid


@dataclass
class InboundMessage:
    """A text message received from someone else"""
    sender_address: str
    text: Optional[str]
    is_self: bool = False


def to_inbound(envelope: Optional[dict]) -> Optional[InboundMessage]:
    """Convert an envelope, or return None when it should not be shown"""
    if not envelope or not envelope.get('message'):
        return None

    key = envelope.get('key') or {}
    if key.get('fromMe'):
        return None

    text = get_message_text(envelope)
    if not text:
        return None

    return InboundMessage(
        sender_address=jid_to_address(key.get('remoteJid') or "unknown"),
        text=text,
        is_self=False,
    )


class MessageListener:
    """Prints live inbound text messages"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or default_console

    async def handle_upsert(self, event: MessagesUpsert):
        # History sync batches are never shown
        if event.type != 'notify':
            return

        for envelope in event.messages:
            inbound = to_inbound(envelope)
            if inbound is None:
                continue
            self.console.print(f"New message from {inbound.sender_address}: {inbound.text}")
