"""Terminal rendering for the chat CLI."""

from __future__ import annotations

from rich.box import ROUNDED
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from agriassist.models import ChatMessage, Conversation, Sender
from agriassist.session import SessionSnapshot


class Theme:
    """Color theme for the UI."""

    PRIMARY = "green"
    SECONDARY = "cyan"

    SUCCESS = "green"
    WARNING = "yellow"
    ERROR = "red"

    USER = "bold cyan"
    ASSISTANT = "bold green"
    MUTED = "dim"
    BORDER = "bright_black"


class Icons:
    """Unicode icons for the UI."""

    DONE = "✓"
    ERROR = "✗"
    WARNING = "⚠"
    CONNECTED = "●"
    DISCONNECTED = "○"
    USER = "›"
    ASSISTANT = "🌱"


def print_error(console: Console, error: str) -> None:
    console.print(Panel(
        Text(f"{Icons.ERROR} {error}", style=Theme.ERROR),
        border_style=Theme.ERROR,
        title="Error",
        title_align="left",
        box=ROUNDED,
    ))


def print_welcome(console: Console, ws_url: str, conversation_id: str | None) -> None:
    lines = [
        Text("AgriAssist chat", style=f"bold {Theme.PRIMARY}"),
        Text(f"Server: {ws_url}", style=Theme.MUTED),
        Text(
            f"Conversation: {conversation_id or 'new (created on first message)'}",
            style=Theme.MUTED,
        ),
        Text("Type /help for commands.", style=Theme.MUTED),
    ]
    console.print(Panel(Text("\n").join(lines), border_style=Theme.BORDER, box=ROUNDED))


def print_message(console: Console, message: ChatMessage) -> None:
    text = message.text_content or (f"[{message.message_type.value.lower()}]" if message.file_path else "")
    if message.sender is Sender.USER:
        console.print(Text(f"{Icons.USER} {text}", style=Theme.USER))
    elif message.sender is Sender.AI:
        console.print(Text(f"{Icons.ASSISTANT} AgriAssist", style=Theme.ASSISTANT))
        console.print(Markdown(text))
    else:
        console.print(Text(text, style=Theme.MUTED))


def conversations_table(conversations: list[Conversation], active_id: str | None = None) -> Table:
    table = Table(box=ROUNDED, border_style=Theme.BORDER, show_lines=False)
    table.add_column("", width=1)
    table.add_column("ID", style=Theme.SECONDARY, no_wrap=True)
    table.add_column("Title")
    table.add_column("Started", style=Theme.MUTED)
    table.add_column("Status", style=Theme.MUTED)
    for conversation in conversations:
        marker = Icons.CONNECTED if conversation.id == active_id else ""
        started = f"{conversation.started_at:%Y-%m-%d %H:%M}" if conversation.started_at else "-"
        table.add_row(marker, conversation.id, conversation.title, started, conversation.status)
    return table


def status_text(snap: SessionSnapshot, language: str) -> Text:
    if snap.is_connected:
        state = Text(f"{Icons.CONNECTED} connected", style=Theme.SUCCESS)
    elif snap.is_connecting:
        state = Text(f"{Icons.DISCONNECTED} connecting", style=Theme.WARNING)
    else:
        state = Text(f"{Icons.DISCONNECTED} disconnected", style=Theme.MUTED)
    text = Text.assemble(
        state,
        Text(f"  conversation: {snap.conversation_id or '-'}", style=Theme.MUTED),
        Text(f"  language: {language}", style=Theme.MUTED),
    )
    if snap.reconnect_attempts:
        text.append(f"  reconnect attempts: {snap.reconnect_attempts}", style=Theme.WARNING)
    if snap.last_error:
        text.append(f"\n{Icons.WARNING} {snap.last_error}", style=Theme.ERROR)
    return text
