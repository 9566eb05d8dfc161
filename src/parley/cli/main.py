"""Parley CLI - run the server and poke at a running one.

Usage:
    parley serve                                  # Run the API with uvicorn
    parley login alice@example.com                # Print an access token
    export PARLEY_TOKEN=...                       # Use it for the rest
    parley conversations                          # Your conversations
    parley send 3 "hello everyone"                # Post into conversation 3
    parley online                                 # Who is online right now
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import os
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:3001"


def _api_url() -> str:
    return os.environ.get("PARLEY_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(token: Optional[str] = None) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the Parley backend."""
    token = token or os.environ.get("PARLEY_TOKEN")
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.AsyncClient(base_url=_api_url(), headers=headers, timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Inside an already running loop (CliRunner under an async test) the
    coroutine is offloaded to a worker thread with its own loop.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


def _fail(message: str) -> None:
    click.secho(message, fg="red", err=True)
    sys.exit(1)


def _check(r: httpx.Response) -> None:
    if r.status_code == 401:
        _fail("Not authenticated. Run `parley login` and export PARLEY_TOKEN.")
    if r.status_code == 404:
        _fail(r.json().get("detail", "Not found"))


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        click.echo("  ".join(str(row.get(k) or "-")[:w].ljust(w) for _, k, w in columns))


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="parley", prog_name="parley")
def main():
    """Parley - real-time chat backend."""


@main.command()
@click.option("--host", default=None, help="Bind address (default from PARLEY_HOST)")
@click.option("--port", "-p", type=int, default=None, help="Port (default from PARLEY_PORT)")
@click.option("--reload", is_flag=True, help="Restart on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server."""
    import uvicorn

    from parley.config import settings

    uvicorn.run(
        "parley.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level,
    )


@main.command()
@click.argument("email")
@click.password_option("--password", confirmation_prompt=False)
def login(email: str, password: str):
    """Log in and print an access token."""
    _run(_login_impl(email, password))


async def _login_impl(email: str, password: str):
    async with _client() as c:
        r = await c.post("/api/v1/auth/login", json={"email": email, "password": password})
        if r.status_code == 401:
            _fail("Invalid credentials.")
        r.raise_for_status()
        data = r.json()

    click.secho(f"Logged in as {data['user']['name']} (#{data['user']['id']})", fg="green")
    click.echo(f"export PARLEY_TOKEN={data['token']['access_token']}")


@main.command()
@click.option("--all", "show_all", is_flag=True, help="Every conversation, not only yours")
def conversations(show_all: bool):
    """List conversations."""
    _run(_conversations_impl(show_all))


async def _conversations_impl(show_all: bool):
    async with _client() as c:
        r = await c.get("/api/v1/conversations" if show_all else "/api/v1/conversations/mine")
        _check(r)
        r.raise_for_status()
        convs = r.json()

    if not convs:
        click.echo("No conversations found.")
        return

    rows = [
        {
            **conv,
            "people": ", ".join(p["name"] for p in conv["participants"]),
        }
        for conv in convs
    ]
    click.secho(f"Conversations ({len(rows)}):", bold=True)
    click.echo()
    _print_table(rows, [
        ("ID", "id", 6),
        ("Name", "name", 24),
        ("Participants", "people", 40),
        ("Last message", "last_message_at", 26),
    ])


@main.command()
@click.argument("conversation_id", type=int)
@click.argument("content")
def send(conversation_id: int, content: str):
    """Post a message into a conversation."""
    _run(_send_impl(conversation_id, content))


async def _send_impl(conversation_id: int, content: str):
    async with _client() as c:
        r = await c.post(
            f"/api/v1/conversations/{conversation_id}/messages",
            json={"content": content},
        )
        _check(r)
        if r.status_code == 502:
            body = r.json()
            click.secho(
                f"Message #{body['message_id']} saved, but live delivery failed.",
                fg="yellow",
            )
            click.echo(f"  Retry with: POST /api/v1/messages/{body['message_id']}/relay")
            sys.exit(1)
        r.raise_for_status()
        msg = r.json()

    click.secho(f"Sent #{msg['id']} to conversation {conversation_id}", fg="green")


@main.command()
def online():
    """Show who is online."""
    _run(_online_impl())


async def _online_impl():
    async with _client() as c:
        r = await c.get("/api/v1/presence")
        _check(r)
        r.raise_for_status()
        entries = r.json()["online"]

    if not entries:
        click.echo("Nobody is online.")
        return
    click.secho(f"Online ({len(entries)}):", bold=True)
    _print_table(entries, [("User", "user_id", 8), ("Last seen", "last_seen", 32)])
