"""cli.py — `worklog` command line.

    worklog serve [--addr :8080] [--token SECRET] [--db ./worklog.db] [--raw-tags]
    worklog post -m "message" [-t "tag one,tag two"] [--token SECRET]
    worklog register USERNAME
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer

from .client import ClientError, WorklogClient, split_tags
from .config import DEFAULT_ADDR, ServerConfig, parse_addr

app = typer.Typer(no_args_is_help=True, add_completion=False, help="Personal status log.")


@app.command()
def serve(
    addr: str = typer.Option(None, "--addr", help="Listen address, e.g. :8080."),
    token: str = typer.Option(
        None, "--token", help="Shared secret. Set it to run single-user; omit for per-user tokens."
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database file."),
    raw_tags: bool = typer.Option(
        False, "--raw-tags", help="Skip tag normalization; store tags as posted."
    ),
    debug: bool = typer.Option(False, "--debug", help="Log to the console."),
):
    """Run the status-log server."""
    from .observability import configure
    from .server import WorklogServer

    config = ServerConfig.from_env()
    if addr is not None:
        try:
            config.host, config.port = parse_addr(addr)
        except ValueError as e:
            raise typer.BadParameter(str(e), param_hint="--addr") from e
    if token is not None:
        config.token = token or None
    if db is not None:
        config.db_path = db
    if raw_tags:
        config.normalize_tags = False

    configure(debug=debug)
    asyncio.run(WorklogServer(config).run_forever())


@app.command()
def post(
    message: str = typer.Option("", "--message", "-m", help="Message to send."),
    tags: str = typer.Option("", "--tags", "-t", help="Comma-separated list of tags."),
    token: str = typer.Option("", "--token", envvar="AUTH_TOKEN", help="X-Auth-Token."),
    addr: str = typer.Option(DEFAULT_ADDR, "--addr", help="Server address."),
):
    """Post one update."""
    if not token:
        typer.echo("X-Auth-Token must be provided via --token or AUTH_TOKEN", err=True)
        raise typer.Exit(code=1)
    if not message:
        typer.echo("message cannot be empty, must be provided via -m", err=True)
        raise typer.Exit(code=1)

    with WorklogClient(addr, token=token) as client:
        try:
            entry = client.post_update(message, tags=split_tags(tags))
        except ClientError as e:
            typer.echo(f"Request failed: {e}", err=True)
            raise typer.Exit(code=1) from e
    typer.echo(json.dumps(entry))


@app.command()
def register(
    username: str = typer.Argument(..., help="Username to create."),
    addr: str = typer.Option(DEFAULT_ADDR, "--addr", help="Server address."),
):
    """Create a user on a multi-user server and print its token."""
    with WorklogClient(addr) as client:
        try:
            user = client.register(username)
        except ClientError as e:
            typer.echo(f"Registration failed: {e}", err=True)
            raise typer.Exit(code=1) from e
    typer.echo(f"{user['username']} (id {user['id']})")
    typer.echo(f"token: {user['token']}")
    typer.echo("This token is shown once. Keep it.")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
