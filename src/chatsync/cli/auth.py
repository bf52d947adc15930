"""CLI: chatsync auth login|signup|status|logout"""

import click
from rich.console import Console

from chatsync.errors import AuthError, AuthQueryError

console = Console()


def _get_client():
    from chatsync.cli.main import _get_client
    return _get_client()


def _run(coro):
    from chatsync.cli.main import _run
    return _run(coro)


@click.group()
def auth():
    """Authentication commands."""


@auth.command("login")
@click.option("--email", default=None)
def auth_login(email):
    """Sign in with email and password."""

    async def _login():
        client = _get_client()
        try:
            addr = email or click.prompt("Email")
            password = click.prompt("Password", hide_input=True)
            with console.status("Signing in..."):
                session = await client.sessions.sign_in(addr, password)
            console.print(f"[green]Signed in as {session.email} (ID: {session.user_id})[/green]")
        except AuthError as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)
        finally:
            await client.close()

    _run(_login())


@auth.command("signup")
@click.option("--email", default=None)
def auth_signup(email):
    """Create an account."""

    async def _signup():
        client = _get_client()
        try:
            addr = email or click.prompt("Email")
            password = click.prompt("Password", hide_input=True, confirmation_prompt=True)
            with console.status("Creating account..."):
                session = await client.sessions.sign_up(addr, password)
            if session is None:
                console.print("[green]Check your email for the confirmation link![/green]")
            else:
                console.print(f"[green]Signed up and signed in as {session.email}[/green]")
        except AuthError as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)
        finally:
            await client.close()

    _run(_signup())


@auth.command("status")
def auth_status():
    """Show current auth status."""

    async def _status():
        client = _get_client()
        try:
            session = await client.sessions.get_current_session()
        except AuthQueryError as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)
        finally:
            await client.close()
        if session:
            console.print(f"[green]Signed in[/green] as {session.email or 'unknown'} (ID: {session.user_id})")
        else:
            console.print("[yellow]Not signed in. Run `chatsync auth login`.[/yellow]")

    _run(_status())


@auth.command("logout")
def auth_logout():
    """Sign out and clear the stored session."""

    async def _logout():
        client = _get_client()
        try:
            await client.start()
            await client.lifecycle.sign_out()
        finally:
            await client.close()
        console.print("[green]Signed out.[/green]")

    _run(_logout())
