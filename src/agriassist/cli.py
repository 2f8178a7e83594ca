"""CLI interface for AgriAssist chat."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Annotated

import typer
from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.history import FileHistory
from prompt_toolkit.key_binding import KeyBindings
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.text import Text

from agriassist import __version__
from agriassist.api import ChatAPI
from agriassist.chat import ChatController
from agriassist.config import ENV_TOKEN, ChatConfig, configure_logging
from agriassist.exceptions import AgriAssistError, ConfigError, ReconnectExhausted, ServerError
from agriassist.models import ChatMessage, Language, parse_language
from agriassist.session import ChatSession, SessionContext, SessionSnapshot
from agriassist.ui import (
    Icons,
    Theme,
    conversations_table,
    print_error,
    print_message,
    print_welcome,
    status_text,
)

app = typer.Typer(
    name="agriassist",
    help="AgriAssist - streaming chat with the farm assistant.",
    no_args_is_help=True,
)
console = Console()

SLASH_COMMANDS = ["/new", "/list", "/open", "/delete", "/status", "/help", "/quit"]
DEFAULT_REPLY_TIMEOUT = 120.0


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"agriassist version {__version__}")
        raise typer.Exit()


def language_callback(value: str | None) -> str | None:
    """Validate reply language."""
    if value is None:
        return None
    try:
        return parse_language(value).value
    except ValueError:
        valid = ", ".join(lang.value for lang in Language)
        raise typer.BadParameter(f"Invalid language. Valid: {valid}") from None


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """AgriAssist - streaming chat with the farm assistant."""


TokenOption = Annotated[
    str | None,
    typer.Option("--token", "-t", envvar=ENV_TOKEN, help="Bearer token for the signed-in user"),
]
ConfigOption = Annotated[
    Path | None, typer.Option("--config", "-c", help="Config file path")
]
LanguageOption = Annotated[
    str | None,
    typer.Option("--language", "-l", callback=language_callback, help="Reply language (en, hi, ta)"),
]


def _load_config(path: Path | None) -> ChatConfig:
    try:
        config = ChatConfig.load(path)
    except (PydanticValidationError, ConfigError) as e:
        print_error(console, f"Invalid config: {e}")
        raise typer.Exit(1) from None
    configure_logging(config)
    return config


def _require_token(token: str | None) -> str:
    if not token:
        print_error(console, f"No token given. Pass --token or set {ENV_TOKEN}.")
        raise typer.Exit(1)
    return token


def _run(coro) -> None:
    """Run a command coroutine with the top-level CLI error handler."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        console.print(f"\n[{Theme.WARNING}]Interrupted[/{Theme.WARNING}]")
    except AgriAssistError as e:
        print_error(console, str(e))
        raise typer.Exit(1) from None


class SlashCompleter(Completer):
    """Completer that only triggers on slash commands."""

    def __init__(self, commands: list[str]) -> None:
        self.commands = commands

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor.lstrip()
        if not text.startswith("/") or " " in text:
            return
        for cmd in self.commands:
            if cmd.lower().startswith(text.lower()):
                yield Completion(cmd, start_position=-len(text))


def _build_prompt_session() -> PromptSession:
    history_path = ChatConfig.default_path().parent / "history"
    history_path.parent.mkdir(parents=True, exist_ok=True)
    bindings = KeyBindings()

    @bindings.add("enter")
    def _(event) -> None:
        buffer = event.app.current_buffer
        if buffer.document.text.strip():
            buffer.validate_and_handle()
        else:
            buffer.reset()

    @bindings.add("escape", "enter")
    def _(event) -> None:
        event.app.current_buffer.insert_text("\n")

    return PromptSession(
        message="you> ",
        history=FileHistory(str(history_path)),
        key_bindings=bindings,
        completer=SlashCompleter(SLASH_COMMANDS),
        complete_while_typing=True,
        multiline=True,
    )


async def _stream_reply(
    controller: ChatController,
    *,
    timeout: float | None,
    raw: bool = False,
) -> ChatMessage | None:
    """Render the reply as it streams and return it once finalized.

    Raises:
        ServerError, ReconnectExhausted: If the turn ends without a reply.
    """
    session = controller.session

    if raw:
        printed = 0

        def write_tokens(snap: SessionSnapshot) -> None:
            nonlocal printed
            if len(snap.stream_buffer) > printed:
                sys.stdout.write(snap.stream_buffer[printed:])
                sys.stdout.flush()
                printed = len(snap.stream_buffer)

        unsubscribe = session.add_listener(write_tokens)
        try:
            reply = await controller.wait_for_reply(timeout, raise_on_error=True)
        finally:
            unsubscribe()
        if printed:
            sys.stdout.write("\n")
        return reply

    with Live(
        Text(f"{Icons.ASSISTANT} thinking...", style=Theme.MUTED),
        console=console,
        refresh_per_second=12,
        transient=True,
    ) as live:

        def render(snap: SessionSnapshot) -> None:
            if snap.stream_buffer:
                live.update(Markdown(snap.stream_buffer))
            elif snap.is_connecting:
                live.update(Text(f"{Icons.DISCONNECTED} connecting...", style=Theme.MUTED))

        unsubscribe = session.add_listener(render)
        try:
            reply = await controller.wait_for_reply(timeout, raise_on_error=True)
        finally:
            unsubscribe()

    if reply is not None:
        print_message(console, reply)
    return reply


async def _send_and_render(
    controller: ChatController,
    text: str,
    language: str | None,
    *,
    timeout: float | None,
    raw: bool = False,
) -> ChatMessage | None:
    await controller.submit(text, language)
    try:
        reply = await _stream_reply(controller, timeout=timeout, raw=raw)
    except asyncio.TimeoutError:
        print_error(console, "Timed out waiting for a reply")
        return None
    except (ServerError, ReconnectExhausted) as e:
        print_error(console, e.message)
        return None
    return reply


def _show_help() -> None:
    console.print(f"\n[{Theme.MUTED}]Commands:[/{Theme.MUTED}]")
    console.print(f"  [{Theme.PRIMARY}]/new[/{Theme.PRIMARY}]          - Start a new conversation")
    console.print(f"  [{Theme.PRIMARY}]/list[/{Theme.PRIMARY}]         - List conversations")
    console.print(f"  [{Theme.PRIMARY}]/open <id>[/{Theme.PRIMARY}]    - Open a conversation and show its history")
    console.print(f"  [{Theme.PRIMARY}]/delete <id>[/{Theme.PRIMARY}]  - Delete a conversation")
    console.print(f"  [{Theme.PRIMARY}]/status[/{Theme.PRIMARY}]       - Show connection status")
    console.print(f"  [{Theme.PRIMARY}]/help[/{Theme.PRIMARY}]         - Show this help")
    console.print(f"  [{Theme.PRIMARY}]/quit[/{Theme.PRIMARY}]         - Exit\n")


async def _handle_command(text: str, controller: ChatController, language: str) -> bool:
    """Run one slash command. Returns False when the loop should exit."""
    command, _, arg = text.partition(" ")
    command = command.lower()
    arg = arg.strip()

    if command in {"/quit", "/exit", "exit", "quit"}:
        return False
    if command == "/help":
        _show_help()
    elif command == "/new":
        await controller.new_chat()
        console.print(f"[{Theme.SUCCESS}]{Icons.DONE} Started new conversation[/{Theme.SUCCESS}]")
    elif command == "/list":
        await controller.refresh_conversations()
        if controller.conversations:
            console.print(conversations_table(controller.conversations, controller.active_conversation_id))
        else:
            console.print(f"[{Theme.MUTED}]No conversations yet[/{Theme.MUTED}]")
    elif command == "/open":
        if not arg:
            console.print(f"[{Theme.WARNING}]Usage: /open <conversation id>[/{Theme.WARNING}]")
            return True
        messages = await controller.select(arg)
        for message in messages:
            print_message(console, message)
        console.print(f"[{Theme.SUCCESS}]{Icons.DONE} Opened {arg}[/{Theme.SUCCESS}]")
    elif command == "/delete":
        if not arg:
            console.print(f"[{Theme.WARNING}]Usage: /delete <conversation id>[/{Theme.WARNING}]")
            return True
        await controller.delete(arg)
        console.print(f"[{Theme.SUCCESS}]{Icons.DONE} Deleted {arg}[/{Theme.SUCCESS}]")
    elif command == "/status":
        console.print(status_text(controller.session.snapshot(), language))
    else:
        console.print(f"[{Theme.WARNING}]Unknown command {command}. Type /help.[/{Theme.WARNING}]")
    return True


async def _interactive_loop(
    config: ChatConfig,
    token: str,
    conversation_id: str | None,
    language: str,
    timeout: float | None,
) -> None:
    context = SessionContext(auth_token=token)
    async with ChatAPI(token, config) as api:
        session = ChatSession(context, config)
        controller = ChatController(api, session)
        prompt_session = _build_prompt_session()
        print_welcome(console, config.ws_base_url, conversation_id)
        try:
            if conversation_id:
                for message in await controller.select(conversation_id):
                    print_message(console, message)

            while True:
                try:
                    text = await prompt_session.prompt_async()
                except (EOFError, KeyboardInterrupt):
                    break

                text = text.strip()
                if not text:
                    continue

                try:
                    if text.startswith("/") or text.lower() in {"exit", "quit"}:
                        if not await _handle_command(text, controller, language):
                            break
                        continue
                    await _send_and_render(controller, text, language, timeout=timeout)
                except AgriAssistError as e:
                    print_error(console, str(e))
        finally:
            controller.close()
            await session.close()


@app.command()
def chat(
    conversation: Annotated[
        str | None, typer.Option("--conversation", "-C", help="Conversation id to resume")
    ] = None,
    language: LanguageOption = None,
    token: TokenOption = None,
    config_file: ConfigOption = None,
    timeout: Annotated[
        float, typer.Option("--timeout", help="Seconds to wait for each reply")
    ] = DEFAULT_REPLY_TIMEOUT,
) -> None:
    """Start an interactive chat."""
    config = _load_config(config_file)
    token = _require_token(token)
    lang = language or config.default_language.value
    _run(_interactive_loop(config, token, conversation, lang, timeout))


async def _run_ask(
    config: ChatConfig,
    token: str,
    prompt: str,
    conversation_id: str | None,
    language: str,
    timeout: float | None,
    raw: bool,
) -> bool:
    context = SessionContext(conversation_id=conversation_id, auth_token=token)
    async with ChatAPI(token, config) as api:
        session = ChatSession(context, config)
        controller = ChatController(api, session)
        try:
            reply = await _send_and_render(controller, prompt, language, timeout=timeout, raw=raw)
            if reply is not None and not raw:
                console.print(f"[{Theme.MUTED}]conversation: {context.conversation_id}[/{Theme.MUTED}]")
            return reply is not None
        finally:
            controller.close()
            await session.close()


@app.command()
def ask(
    prompt: Annotated[str | None, typer.Argument(help="Question to send (or read from stdin)")] = None,
    conversation: Annotated[
        str | None, typer.Option("--conversation", "-C", help="Send into an existing conversation")
    ] = None,
    language: LanguageOption = None,
    token: TokenOption = None,
    config_file: ConfigOption = None,
    timeout: Annotated[
        float, typer.Option("--timeout", help="Seconds to wait for the reply")
    ] = DEFAULT_REPLY_TIMEOUT,
    raw: Annotated[bool, typer.Option("--raw", help="Print tokens as plain text as they arrive")] = False,
) -> None:
    """Ask one question and print the streamed reply."""
    if prompt is None:
        if sys.stdin.isatty():
            console.print(f"[{Theme.ERROR}]No prompt given[/{Theme.ERROR}]")
            raise typer.Exit(1)
        prompt = sys.stdin.read()
    if not prompt.strip():
        console.print(f"[{Theme.ERROR}]Prompt is empty[/{Theme.ERROR}]")
        raise typer.Exit(1)

    config = _load_config(config_file)
    token = _require_token(token)
    lang = language or config.default_language.value
    outcome: list[bool] = []

    async def run() -> None:
        outcome.append(await _run_ask(config, token, prompt, conversation, lang, timeout, raw))

    _run(run())
    if outcome and not outcome[0]:
        raise typer.Exit(1)


@app.command()
def conversations(
    token: TokenOption = None,
    config_file: ConfigOption = None,
    page: Annotated[int, typer.Option("--page", help="Page number")] = 1,
    limit: Annotated[int | None, typer.Option("--limit", help="Page size")] = None,
) -> None:
    """List your conversations."""
    config = _load_config(config_file)
    token = _require_token(token)

    async def run() -> None:
        async with ChatAPI(token, config) as api:
            result = await api.list_conversations(page, limit or config.conversations_page_size)
        if not result.data:
            console.print(f"[{Theme.MUTED}]No conversations[/{Theme.MUTED}]")
            return
        console.print(conversations_table(result.data))
        console.print(
            f"[{Theme.MUTED}]page {result.pagination.page} of "
            f"{max(result.pagination.total_pages, 1)} ({result.pagination.total} total)[/{Theme.MUTED}]"
        )

    _run(run())


@app.command()
def history(
    conversation_id: Annotated[str, typer.Argument(help="Conversation id")],
    token: TokenOption = None,
    config_file: ConfigOption = None,
    page: Annotated[int, typer.Option("--page", help="Page number")] = 1,
    limit: Annotated[int | None, typer.Option("--limit", help="Page size")] = None,
) -> None:
    """Show a conversation's stored messages."""
    config = _load_config(config_file)
    token = _require_token(token)

    async def run() -> None:
        async with ChatAPI(token, config) as api:
            result = await api.get_messages(conversation_id, page, limit or config.history_page_size)
        if not result.data:
            console.print(f"[{Theme.MUTED}]No messages[/{Theme.MUTED}]")
            return
        for message in result.data:
            print_message(console, message)
        if result.has_more:
            console.print(f"[{Theme.MUTED}]More messages: --page {page + 1}[/{Theme.MUTED}]")

    _run(run())


@app.command()
def delete(
    conversation_id: Annotated[str, typer.Argument(help="Conversation id")],
    token: TokenOption = None,
    config_file: ConfigOption = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Delete a conversation."""
    config = _load_config(config_file)
    token = _require_token(token)
    if not yes and not typer.confirm(f"Delete conversation {conversation_id}?"):
        raise typer.Exit()

    async def run() -> None:
        async with ChatAPI(token, config) as api:
            await api.delete_conversation(conversation_id)
        console.print(f"[{Theme.SUCCESS}]{Icons.DONE} Deleted {conversation_id}[/{Theme.SUCCESS}]")

    _run(run())


@app.command()
def init(
    path: Annotated[
        Path | None, typer.Option("--path", "-p", help="Config file path")
    ] = None,
    force: Annotated[bool, typer.Option("--force", help="Overwrite an existing file")] = False,
) -> None:
    """Create a default config file."""
    import tomli_w

    if path is None:
        path = ChatConfig.default_path()
    if path.exists() and not force:
        console.print(f"[{Theme.WARNING}]Config already exists at {path} (use --force)[/{Theme.WARNING}]")
        raise typer.Exit(1)
    path.parent.mkdir(parents=True, exist_ok=True)

    defaults = ChatConfig()
    config = {
        "ws_base_url": defaults.ws_base_url,
        "api_base_url": defaults.api_base_url,
        "default_language": defaults.default_language.value,
        "open_timeout": defaults.open_timeout,
        "http_timeout": defaults.http_timeout,
        "history_page_size": defaults.history_page_size,
        "conversations_page_size": defaults.conversations_page_size,
        "log_level": defaults.log_level,
        "reconnect": {
            "max_attempts": defaults.reconnect.max_attempts,
            "base_delay": defaults.reconnect.base_delay,
        },
    }

    with open(path, "wb") as f:
        tomli_w.dump(config, f)

    console.print(f"[{Theme.SUCCESS}]Created config at:[/{Theme.SUCCESS}] {path}")


if __name__ == "__main__":
    app()
