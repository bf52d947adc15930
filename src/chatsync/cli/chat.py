"""CLI: chatsync chat"""

import asyncio
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape

from chatsync.errors import SessionError
from chatsync.lifecycle import LifecycleController, LifecycleState
from chatsync.models.message import Message
from chatsync.reconciler import LogChange

console = Console()

COMMANDS = "/clear  /reload  /signout  /quit"


def _get_client():
    from chatsync.cli.main import _get_client
    return _get_client()


def _run(coro):
    from chatsync.cli.main import _run
    return _run(coro)


def format_message(message: Message) -> str:
    if message.is_system_notice:
        return f"[dim italic]{escape(message.text)}[/dim italic]"
    return (
        f"[dim]{message.time_label}[/dim] "
        f"[bold green]{escape(message.author_display_name)}[/bold green]: {escape(message.text)}"
    )


async def _prompt(text: str, **kwargs) -> str:
    # stdin is read off-loop so realtime events keep arriving meanwhile
    return await asyncio.to_thread(click.prompt, text, **kwargs)


async def handle_line(lifecycle: LifecycleController, line: str) -> bool:
    """Run one REPL line. Returns False when the session should end."""
    cmd = line.strip().lower()
    if cmd in ("/quit", "/exit"):
        return False
    if cmd == "/clear":
        lifecycle.clear()
        console.print("[dim]-- chat cleared --[/dim]")
    elif cmd == "/reload":
        await lifecycle.reload()
    elif cmd == "/signout":
        await lifecycle.sign_out()
        console.print("[green]Signed out.[/green]")
        return False
    else:
        try:
            lifecycle.send(line)
        except SessionError:
            # signed out elsewhere while waiting for input
            console.print("[yellow]Session ended; leaving the chat.[/yellow]")
            return False
    return True


@click.command("chat")
@click.option("-n", "--name", default=None, help="Display name (defaults to your email's local part)")
def chat_cmd(name: Optional[str]):
    """Join the chat room."""

    async def _chat():
        client = _get_client()
        lifecycle = client.lifecycle

        def on_log(change: str, message: Optional[Message]) -> None:
            if change == LogChange.APPENDED and message is not None:
                console.print(format_message(message))
            elif change == LogChange.REPLACED:
                for m in lifecycle.messages:
                    console.print(format_message(m))

        remove = lifecycle.reconciler.add_listener(on_log)
        try:
            with console.status("Loading chat..."):
                await client.start()
            if lifecycle.state is not LifecycleState.ACTIVE:
                console.print("[red]Not signed in. Run `chatsync auth login` first.[/red]")
                return
            display = name or await _prompt("Display name", default=lifecycle.display_name or None)
            await lifecycle.join(display)
            if not lifecycle.channel.connected:
                console.print("[yellow]Realtime server unreachable; messages will not reach others.[/yellow]")
            console.print(f"[cyan]Type your message ({COMMANDS})[/cyan]\n")
            while lifecycle.state is LifecycleState.ACTIVE:
                line = await _prompt("", prompt_suffix="> ")
                if not await handle_line(lifecycle, line):
                    break
        except (KeyboardInterrupt, EOFError, click.Abort):
            pass
        finally:
            remove()
            await client.close()

    _run(_chat())
