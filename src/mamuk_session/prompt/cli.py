"""Interactive console for signing in and exercising the route guard.

Pattern: Prompt Renderer
-------------------------
The CLI is the human-facing boundary.  It handles three responsibilities:

  1. **Sign-in**: resume a persisted session, or collect credentials and
     delegate to ``SessionState.login``.
  2. **Session display**: show the user, roles and token expiry.
  3. **Navigation loop**: ``go <path>`` runs the route guard, ``whoami``
     refreshes the profile, ``logout`` ends the session.

Rich and the standard ``input``/``getpass`` prompts are used for display and
input respectively.  Prompts run in a worker thread so the proactive refresh
keeps ticking on the event loop while the console waits for a line.  The
CLI knows nothing about tokens or HTTP; it delegates everything to the
session.
"""

from __future__ import annotations

import asyncio
import getpass
import logging

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mamuk_session.auth.state import SessionState
from mamuk_session.config import Settings
from mamuk_session.errors import AuthError
from mamuk_session.routing.guard import RouteAuthorizer
from mamuk_session.routing.navigation import HistoryNavigator, extract_return_path
from mamuk_session.routing.policy import RoutePolicy

logger = logging.getLogger(__name__)
console = Console()

HELP = "Commands: [bold]go <path>[/bold], [bold]whoami[/bold], [bold]logout[/bold], [bold]quit[/bold]"


async def _ask(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


async def _ask_secret(prompt: str) -> str:
    return await asyncio.to_thread(getpass.getpass, prompt)


def _print_banner(settings: Settings) -> None:
    console.print(
        Panel(
            "[bold]Mamuk Session[/bold]\n"
            f"Identity service: {settings.api_base_url}",
            border_style="blue",
        )
    )


def _print_session(session: SessionState) -> None:
    user = session.user
    if user is None:
        console.print("[dim]Not signed in.[/dim]")
        return
    expires_at = session.credentials.get_expiry()
    table = Table(title="Session", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="bold")
    table.add_row("User", f"{user.name} <{user.email}>")
    table.add_row("Primary role", user.primary_role)
    table.add_row("Roles", ", ".join(sorted(user.roles)))
    table.add_row("Token expires", expires_at.isoformat() if expires_at else "unknown")
    console.print(table)


async def _sign_in(session: SessionState) -> bool:
    """Prompt for credentials until sign-in succeeds or the user gives up."""
    console.print("\n[bold yellow]Sign in[/bold yellow]\n")
    email = (await _ask("  Email: ")).strip()
    password = await _ask_secret("  Password: ")
    if not email or not password:
        console.print("[red]Email and password are required.[/red]")
        return False
    try:
        user = await session.login(email, password)
    except AuthError as exc:
        console.print(f"[red]Sign-in failed:[/red] {exc}")
        return False
    console.print(f"\n  [green]Signed in[/green] as [bold]{user.name or user.email}[/bold]\n")
    return True


async def _navigation_loop(session: SessionState, guard: RouteAuthorizer, navigator: HistoryNavigator) -> None:
    console.print(HELP)
    while True:
        try:
            line = (await _ask(f"[{navigator.current_location()}] > ")).strip()
        except (EOFError, KeyboardInterrupt):
            break
        if not line:
            continue
        command, _, argument = line.partition(" ")

        if command in ("quit", "exit"):
            break
        if command == "logout":
            session.logout()
            console.print("[yellow]Signed out.[/yellow]")
            continue
        if command == "whoami":
            try:
                await session.refresh_user_data()
            except AuthError as exc:
                console.print(f"[red]{exc}[/red]")
            _print_session(session)
            continue
        if command == "go" and argument:
            await _go(session, guard, navigator, argument.strip())
            continue
        console.print(HELP)


async def _go(session: SessionState, guard: RouteAuthorizer, navigator: HistoryNavigator, path: str) -> None:
    navigator.visit(path)
    decision = await guard.enter(path)
    if decision.allowed:
        console.print(f"  [green]Opened[/green] {path}")
        return
    console.print(f"  [red]{decision.reason}[/red] → {decision.redirect_to}")
    if decision.reason == "unauthenticated" and await _sign_in(session):
        return_path = extract_return_path(decision.redirect_to or "")
        await _go(session, guard, navigator, return_path or guard.home_path())


async def _run(settings: Settings, routes_path: str | None) -> None:
    navigator = HistoryNavigator()
    policy = RoutePolicy(policy_path=routes_path or settings.routes_path)
    async with SessionState(settings, navigator=navigator) as session:
        if session.is_authenticated:
            console.print("[green]Resumed persisted session.[/green]")
        elif not await _sign_in(session):
            return
        _print_session(session)
        guard = RouteAuthorizer(session, policy)
        await _go(session, guard, navigator, guard.home_path())
        await _navigation_loop(session, guard, navigator)


def run_cli(settings: Settings, routes_path: str | None = None) -> None:
    """Main entry point for the interactive CLI."""
    _print_banner(settings)
    asyncio.run(_run(settings, routes_path))
    console.print("\n[dim]Goodbye.[/dim]")
