"""CLI entry point for aichat-client."""

import asyncio
import logging

import click
import uvicorn

from .backends import get_storage
from .conversations import ConversationStore
from .core import Message
from .errors import ChatError
from .models import get_default_model, load_models
from .preferences import PreferenceStore
from .session import ChatSession
from .transport import NanoGPTTransport


@click.group()
@click.option("--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """Chat with NanoGPT models and keep the history on this device."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
def serve(port: int, host: str):
    """Start the web API."""
    click.echo(f"Starting aichat-client on http://{host}:{port}")
    uvicorn.run("aichat_client.server:app", host=host, port=port, reload=False)


@main.command()
def models():
    """List available models."""
    registry, error = load_models()
    if error:
        click.echo(f"Warning: {error}", err=True)
    default_id = get_default_model(registry).id
    for model in registry:
        marker = "*" if model.id == default_id else " "
        click.echo(f"{marker} {model.id:<40} {model.name}")


@main.command()
def conversations():
    """List stored conversations, newest first."""
    store = ConversationStore(get_storage())
    for conversation in store.get_all():
        updated = conversation.updated_at.strftime("%Y-%m-%d %H:%M")
        click.echo(f"{conversation.id}  {updated}  {len(conversation.messages):>3}  {conversation.title}")


@main.command()
@click.option("--conversation", "conversation_id", default=None, help="Resume a stored conversation.")
@click.option("--model", "model_id", default=None, help="Model to use (remembered for next time).")
def chat(conversation_id: str | None, model_id: str | None):
    """Start an interactive chat in the terminal."""
    storage = get_storage()
    registry, error = load_models()
    if error:
        click.echo(f"Warning: {error}", err=True)

    try:
        session = ChatSession.open(
            ConversationStore(storage),
            NanoGPTTransport(),
            conversation_id,
            models=registry,
            preferences=PreferenceStore(storage),
        )
    except KeyError:
        raise click.ClickException(f"Conversation not found: {conversation_id}")

    if model_id:
        session.select_model(model_id)
    click.echo(f"Conversation {session.conversation_id} using {session.selected_model_id}")
    click.echo("Type /exit to quit.")

    printer = _LivePrinter()
    session.engine.subscribe(printer)
    try:
        asyncio.run(_chat_loop(session, printer))
    finally:
        session.close()


async def _chat_loop(session: ChatSession, printer: "_LivePrinter") -> None:
    while True:
        text = await asyncio.to_thread(click.prompt, "you", prompt_suffix="> ", default="", show_default=False)
        if text.strip() in ("/exit", "/quit"):
            return
        if not text.strip():
            continue

        printer.reset()
        try:
            await session.send(text)
        except ChatError as e:
            click.echo(f"\nError: {e.message}", err=True)
        click.echo("")


class _LivePrinter:
    """Echoes the growing assistant reply as engine snapshots arrive."""

    def __init__(self):
        self._printed = 0
        self._message_id: str | None = None

    def reset(self) -> None:
        self._printed = 0
        self._message_id = None

    def __call__(self, messages: list[Message], status: str) -> None:
        if not messages or messages[-1].role != "assistant":
            return
        last = messages[-1]
        if last.id != self._message_id:
            self._message_id = last.id
            self._printed = 0
            click.echo("assistant> ", nl=False)
        if len(last.content) > self._printed:
            click.echo(last.content[self._printed:], nl=False)
            self._printed = len(last.content)
