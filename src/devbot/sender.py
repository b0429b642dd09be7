"""Outbound message interface and a terminal implementation."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

_TEMPLATE_STYLES = {
    "blue": "blue",
    "green": "green",
    "red": "red",
    "purple": "magenta",
    "orange": "dark_orange",
}


@dataclass(slots=True)
class CardMsg:
    """Card with a Markdown body; ``template`` picks the header color."""

    title: str = ""
    content: str = ""
    template: str = "blue"


class Sender(Protocol):
    """Delivers notices to a conversation."""

    def send_text(self, chat_id: str, text: str) -> None:
        """Send a plain text message."""

    def send_card(self, chat_id: str, card: CardMsg) -> None:
        """Send a card message."""


class ConsoleSender:
    """Render conversation notices on a Rich console.

    Worker threads of different conversations print concurrently, so output
    is serialized with a lock.
    """

    def __init__(self, console: Console | None = None, *, show_chat_id: bool = False) -> None:
        self._console = console or Console()
        self._show_chat_id = show_chat_id
        self._lock = threading.Lock()

    def send_text(self, chat_id: str, text: str) -> None:
        with self._lock:
            self._console.print(f"{self._prefix(chat_id)}{text}", markup=False, highlight=False)

    def send_card(self, chat_id: str, card: CardMsg) -> None:
        style = _TEMPLATE_STYLES.get(card.template or "blue", "blue")
        title = Text(f"{self._prefix(chat_id)}{card.title}") if card.title else None
        panel = Panel(
            Markdown(card.content),
            title=title,
            title_align="left",
            border_style=style,
        )
        with self._lock:
            self._console.print(panel)

    def _prefix(self, chat_id: str) -> str:
        return f"[{chat_id}] " if self._show_chat_id else ""
