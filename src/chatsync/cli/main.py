"""
chatsync CLI — `chatsync` command.

Commands:
  chatsync auth login      Email + password sign-in
  chatsync auth signup     Create an account and chat profile
  chatsync auth status     Show the stored session
  chatsync auth logout     Sign out and forget the stored session
  chatsync chat            Join the chat room (REPL)
  chatsync config          Show or set configuration values
"""

import asyncio
import logging

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install chatsync[cli]")

from chatsync import __version__
from chatsync.client import ChatClient
from chatsync.config import CONFIG_FILE, ClientConfig, load_config, save_config

console = Console()


def _load_config() -> ClientConfig:
    return load_config(CONFIG_FILE)


def _save_config(cfg: ClientConfig) -> None:
    save_config(cfg, CONFIG_FILE)


def _get_client() -> ChatClient:
    cfg = _load_config()
    if not cfg.supabase_configured:
        console.print("[red]Supabase is not configured. Run `chatsync config --supabase-url ... --supabase-key ...`.[/red]")
        raise SystemExit(1)
    return ChatClient(cfg)


def _run(coro):
    return asyncio.run(coro)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


@click.group()
@click.version_option(__version__)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def main(verbose: bool):
    """chatsync — realtime chat with stored history."""
    _setup_logging(verbose)


@main.command("config")
@click.option("--server-url", default=None, help="Realtime chat server URL")
@click.option("--supabase-url", default=None, help="Supabase project URL")
@click.option("--supabase-key", default=None, help="Supabase anon key")
def config_cmd(server_url, supabase_url, supabase_key):
    """Show or update ~/.chatsync/config.json."""
    cfg = _load_config()
    updates = {k: v for k, v in {
        "server_url": server_url, "supabase_url": supabase_url, "supabase_key": supabase_key,
    }.items() if v is not None}
    if updates:
        cfg = cfg.model_copy(update=updates)
        _save_config(cfg)
        console.print(f"[green]Saved to {CONFIG_FILE}[/green]")
    shown = cfg.model_dump(mode="json")
    if shown.get("supabase_key"):
        shown["supabase_key"] = shown["supabase_key"][:6] + "…"
    for key, value in shown.items():
        console.print(f"[bold]{key}[/bold]: {value}")


# Register subcommands from separate modules
from chatsync.cli.auth import auth
from chatsync.cli.chat import chat_cmd

main.add_command(auth)
main.add_command(chat_cmd)


if __name__ == "__main__":
    main()
