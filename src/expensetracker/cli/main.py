"""ExpenseTracker CLI — accounts, password reset, and invitations from a terminal.

Usage:
    expensetracker register --name Ana --email ana@example.com   # Create an account
    expensetracker login --email ana@example.com                 # Print a token pair
    expensetracker whoami --token <access-token>                 # Show the session
    expensetracker forgot-password ana@example.com               # Request a reset link
    expensetracker reset-password <token>                        # Set a new password
    expensetracker invite-details <token>                        # Inspect an invitation
    expensetracker accept-invite <token> --name Bo               # Join a team

Talks to the HTTP API at EXPENSETRACKER_API_URL (default http://localhost:8000).
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("EXPENSETRACKER_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(token: Optional[str] = None) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the ExpenseTracker backend."""
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.AsyncClient(base_url=_api_url(), headers=headers, timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _check(r: httpx.Response) -> dict:
    """Return the JSON body, or print the API's error and exit 1."""
    if r.status_code >= 400:
        try:
            body = r.json()
        except ValueError:
            body = {"detail": r.text}
        code = body.get("code")
        suffix = f" [{code}]" if code else ""
        click.secho(f"Error: {body.get('detail', r.status_code)}{suffix}", fg="red", err=True)
        sys.exit(1)
    return r.json()


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="expensetracker")
def main():
    """ExpenseTracker — manage accounts, password resets, and team invitations."""


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@main.command()
@click.option("--name", required=True, help="Display name")
@click.option("--email", required=True, help="Account email")
@click.password_option(help="Password (prompted if omitted)")
def register(name: str, email: str, password: str):
    """Create a password account."""
    _run(_register_impl(name, email, password))


async def _register_impl(name: str, email: str, password: str):
    async with _client() as c:
        r = await c.post("/api/v1/auth/register", json={
            "name": name, "email": email, "password": password,
        })
        user = _check(r)
    click.secho(f"Registered {user['email']} ({user['id']})", fg="green")


@main.command()
@click.option("--email", required=True, help="Account email")
@click.option("--password", prompt=True, hide_input=True, help="Password")
def login(email: str, password: str):
    """Sign in and print the access/refresh token pair."""
    _run(_login_impl(email, password))


async def _login_impl(email: str, password: str):
    async with _client() as c:
        r = await c.post("/api/v1/auth/login", json={"email": email, "password": password})
        tokens = _check(r)
    click.echo(_pretty_json(tokens))


@main.command()
@click.option("--token", envvar="EXPENSETRACKER_TOKEN", required=True,
              help="Access token (or set EXPENSETRACKER_TOKEN)")
def whoami(token: str):
    """Show the identity carried by an access token."""
    _run(_whoami_impl(token))


async def _whoami_impl(token: str):
    async with _client(token) as c:
        me = _check(await c.get("/api/v1/auth/me"))
    click.echo(f"{me.get('name') or '—'} <{me.get('email') or '—'}>  id={me['id']}")


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@main.command("forgot-password")
@click.argument("email")
def forgot_password(email: str):
    """Request a password reset link for EMAIL."""
    _run(_forgot_password_impl(email))


async def _forgot_password_impl(email: str):
    async with _client() as c:
        body = _check(await c.post("/api/v1/auth/forgot-password", json={"email": email}))
    click.echo(body["message"])
    if body.get("resetUrl"):
        click.secho(f"Reset link: {body['resetUrl']}", fg="yellow")


@main.command("reset-password")
@click.argument("token")
@click.password_option(help="New password (prompted if omitted)")
def reset_password(token: str, password: str):
    """Set a new password using a reset TOKEN."""
    _run(_reset_password_impl(token, password))


async def _reset_password_impl(token: str, password: str):
    async with _client() as c:
        body = _check(await c.post("/api/v1/auth/reset-password", json={
            "token": token, "password": password,
        }))
    click.secho(body["message"], fg="green")


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


@main.command("invite-details")
@click.argument("token")
def invite_details(token: str):
    """Show who invited you, to which company, and with what role."""
    _run(_invite_details_impl(token))


async def _invite_details_impl(token: str):
    async with _client() as c:
        d = _check(await c.get("/api/v1/team-invites/details", params={"token": token}))

    click.secho(f"Invitation to {d.get('org_name') or d['org_id']}", bold=True)
    click.echo(f"  From:        {d['inviter_name']}")
    click.echo(f"  Email:       {d['email']}")
    click.echo(f"  Role:        {d['role']}")
    if d.get("department"):
        click.echo(f"  Department:  {d['department']}")
    click.echo(f"  Permissions: {', '.join(d.get('permissions') or []) or '—'}")
    click.echo(f"  Expires:     {d['expires_at']}")
    if d["user_exists"]:
        click.echo(f"  Account:     exists ({d.get('user_name')})")
    else:
        click.secho("  Account:     none yet, pass --name and --password to accept",
                    fg="yellow")


@main.command("accept-invite")
@click.argument("token")
@click.option("--name", help="Name for a new account")
@click.option("--password", help="Password for a new account")
def accept_invite(token: str, name: Optional[str], password: Optional[str]):
    """Accept an invitation TOKEN, creating an account if --name/--password are given."""
    _run(_accept_invite_impl(token, name, password))


async def _accept_invite_impl(token: str, name: Optional[str], password: Optional[str]):
    body: dict = {"token": token}
    if name or password:
        body["userData"] = {"name": name, "password": password}

    async with _client() as c:
        resp = _check(await c.post("/api/v1/team-invites/accept", json=body))

    member = resp["teamMember"]
    click.secho(resp["message"], fg="green")
    click.echo(f"  {member['name']} <{member['email']}> as {member['role']}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
