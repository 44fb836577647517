"""CLI entrypoint for Session Search."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

import requests
import typer

app = typer.Typer(name="sessrch", help="Session Search command-line interface")

DEFAULT_HOST = "http://127.0.0.1:12001"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("SESSION_SEARCH_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    resp = requests.request(method, url, timeout=60, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


@app.command()
def search(
    q: str = typer.Argument(..., help="Query text"),
    source: Optional[str] = typer.Option(None, "--source", help="Only search one session source"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Maximum number of results"),
    fuzzy: Optional[bool] = typer.Option(None, "--fuzzy/--no-fuzzy", help="Force fuzzy matching on/off"),
    strict: bool = typer.Option(False, "--strict", help="Fail while the index is still partial"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Search indexed sessions."""
    params: dict[str, object] = {"q": q}
    if source:
        params["source"] = source
    if limit is not None:
        params["limit"] = limit
    if fuzzy is not None:
        params["fuzzy"] = str(fuzzy).lower()
    if strict:
        params["strict"] = "true"
    resp = _request("GET", "/search", host=host, params=params)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def coverage(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show how much of the catalog is searchable."""
    resp = _request("GET", "/coverage", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def index(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Text file with the session content"),
    session_id: str = typer.Option(..., "--id", help="Session identifier"),
    source: str = typer.Option(..., "--source", help="Session source, e.g. claude or codex"),
    display: str = typer.Option("", "--display", help="Session title"),
    project: str = typer.Option("", "--project", help="Project path or name"),
    timestamp: int = typer.Option(0, "--timestamp", help="Session timestamp in epoch milliseconds"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Index (or replace) one session from a text file."""
    payload = {
        "session_id": session_id,
        "source": source,
        "display": display,
        "project": project,
        "content": path.expanduser().read_text(encoding="utf-8"),
        "timestamp": timestamp,
    }
    resp = _request("POST", "/index", host=host, json=payload)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def remove(
    session_id: str = typer.Argument(..., help="Session identifier"),
    source: Optional[str] = typer.Option(None, "--source", help="Only remove this source's session"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Remove a session from the search index."""
    params = {"source": source} if source else None
    resp = _request("DELETE", f"/index/{session_id}", host=host, params=params)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def serve() -> None:  # pragma: no cover - starts a server
    """Run the search API with the filesystem watcher enabled."""
    from session_search.app import main

    main()


if __name__ == "__main__":
    app()
