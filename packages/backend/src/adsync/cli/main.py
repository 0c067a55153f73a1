"""adsync CLI — inspect the relay, publish test events, run the server.

Usage:
    adsync status                                   # Connections + relay states
    adsync publish progress.u9 '{"progress": 50}'   # Publish to the exchange
    adsync publish result.u9 'not json' --raw       # Publish a raw payload
    adsync publish progress --user u9 '{"progress": 5}'  # Key built from kind + user
    adsync publish crawl --user u9 '{"city": "msk"}'    # task.crawl.u9
    adsync token u9                                 # Mint a dev access token
    adsync serve                                    # Run the API with uvicorn
"""

from __future__ import annotations

import asyncio
import json
import os
import sys

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8081"


def _api_url() -> str:
    return os.environ.get("ADSYNC_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the adsync backend."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=10.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _state_color(state: str) -> str:
    """Map relay states to click colors."""
    colors = {
        "consuming": "green",
        "connecting": "yellow",
        "reconnecting": "yellow",
        "stopped": "red",
    }
    return colors.get(state, "white")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="adsync")
def main():
    """adsync — real-time event relay for marketplace listing sync."""


# ---------------------------------------------------------------------------
# adsync status
# ---------------------------------------------------------------------------


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print the raw health payload")
def status(as_json: bool):
    """Show live connections and relay states."""
    try:
        data = asyncio.run(_status_impl())
    except httpx.HTTPError as e:
        click.secho(f"Error: cannot reach {_api_url()}: {e}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(_pretty_json(data))
        return

    color = "green" if data.get("status") == "healthy" else "yellow"
    click.secho(f"adsync {data.get('version', '?')} — {data.get('status')}", fg=color, bold=True)

    conns = data.get("connections", {})
    click.echo(
        f"connections: {conns.get('connections', 0)}  "
        f"users: {conns.get('users', 0)}  jobs: {conns.get('jobs', 0)}  "
        f"delivered: {conns.get('delivered', 0)}  dropped: {conns.get('dropped', 0)}"
    )

    relays = data.get("relays")
    if not isinstance(relays, dict):
        click.echo(f"relays: {relays}")
        return
    for name, stats in relays.items():
        state = stats.get("state", "?")
        click.echo(f"  {name:<12} ", nl=False)
        click.secho(f"{state:<13}", fg=_state_color(state), nl=False)
        click.echo(
            f"{stats.get('binding_key', ''):<12} "
            f"received={stats.get('received', 0)} errors={stats.get('errors', 0)} "
            f"reconnects={stats.get('reconnects', 0)}"
        )


async def _status_impl() -> dict:
    async with _client() as c:
        resp = await c.get("/api/v1/health")
        resp.raise_for_status()
        return resp.json()


# ---------------------------------------------------------------------------
# adsync publish
# ---------------------------------------------------------------------------


def _routing_key(kind: str, user_id: str) -> str:
    """Build a routing key from an event kind shorthand and a user id."""
    from adsync.realtime.pubsub import crawl_task_key, progress_key, result_key

    builders = {"progress": progress_key, "result": result_key, "crawl": crawl_task_key}
    if kind not in builders:
        raise click.BadParameter(
            f"with --user, ROUTING_KEY must be one of {', '.join(builders)}",
            param_hint="ROUTING_KEY",
        )
    return builders[kind](user_id)


@main.command()
@click.argument("routing_key")
@click.argument("payload")
@click.option("--user", "user_id", default=None,
              help="Treat ROUTING_KEY as progress|result|crawl and build the key for this user")
@click.option("--raw", is_flag=True, help="Send PAYLOAD as-is, even if it isn't JSON")
@click.option("--url", envvar="ADSYNC_RABBITMQ_URL", help="RabbitMQ URL override")
def publish(routing_key: str, payload: str, user_id: str | None, raw: bool, url: str | None):
    """Publish PAYLOAD to the topic exchange under ROUTING_KEY."""
    if user_id is not None:
        routing_key = _routing_key(routing_key, user_id)

    if not raw:
        try:
            json.loads(payload)
        except json.JSONDecodeError as e:
            click.secho(f"Error: PAYLOAD is not JSON ({e}); use --raw to send anyway", fg="red", err=True)
            sys.exit(1)

    from adsync.realtime.errors import PublishError

    try:
        asyncio.run(_publish_impl(routing_key, payload, url))
    except (PublishError, OSError) as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)
    click.secho(f"Published to {routing_key}", fg="green")


async def _publish_impl(routing_key: str, payload: str, url: str | None) -> None:
    from adsync.realtime.pubsub import close_publisher, init_publisher, publish_event

    channel = await init_publisher(url)
    try:
        await publish_event(routing_key, payload, channel=channel)
    finally:
        await close_publisher()


# ---------------------------------------------------------------------------
# adsync token
# ---------------------------------------------------------------------------


@main.command()
@click.argument("user_id")
@click.option("--minutes", type=int, default=None, help="Token lifetime")
def token(user_id: str, minutes: int | None):
    """Mint an access token for USER_ID (uses ADSYNC_JWT_SECRET)."""
    from adsync.auth.jwt import create_access_token

    click.echo(create_access_token(user_id, expires_minutes=minutes))


# ---------------------------------------------------------------------------
# adsync serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default from settings)")
@click.option("--port", type=int, default=None, help="Port (default from settings)")
def serve(host: str | None, port: int | None):
    """Run the API server with uvicorn."""
    import uvicorn

    from adsync.config import settings

    uvicorn.run(
        "adsync.main:app",
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
