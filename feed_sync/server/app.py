"""feed_sync - MCP server and command line interface.

This module wires the application state into a FastMCP server with
multi-transport support (STDIO, SSE, and Streamable HTTP), and offers a few
direct commands for scripting (add, remove, list, refresh).
"""

import asyncio
import logging
import os
import sys
from typing import Optional

import click
from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings

from feed_sync.app import FeedReaderApp
from feed_sync.commands import AddFeed, RefreshAll, RemoveFeed
from feed_sync.config import ServerConfig, get_config
from feed_sync.errors import CorruptStore, FeedSyncError
from feed_sync.logging_config import logger, setup_logging
from feed_sync.services.coordinator import Failed, Updated
from feed_sync.tools.feed_tools import build_feed_tools


def create_mcp_server(app: FeedReaderApp, config: Optional[ServerConfig] = None) -> FastMCP:
    """Create and configure the MCP server.

    Args:
        app: Application state the tools operate on
        config: Optional server configuration (defaults to the app's)

    Returns:
        Configured FastMCP server instance
    """
    if config is None:
        config = app.config

    # Configure DNS rebinding protection (disabled by default for development)
    dns_protection = os.getenv("MCP_DNS_REBINDING_PROTECTION", "false").lower() == "true"
    allowed_hosts_env = os.getenv("MCP_ALLOWED_HOSTS", "")
    allowed_hosts = [h.strip() for h in allowed_hosts_env.split(",") if h.strip()] if allowed_hosts_env else []

    logger.info(f"DNS rebinding protection: {'enabled' if dns_protection else 'disabled'}")
    if dns_protection and allowed_hosts:
        logger.info(f"Allowed hosts: {allowed_hosts}")

    mcp_server = FastMCP(
        config.name or "feed_sync",
        transport_security=TransportSecuritySettings(
            enable_dns_rebinding_protection=dns_protection,
            allowed_hosts=allowed_hosts
        )
    )

    register_tools(mcp_server, app)

    logger.info("Server initialization complete")
    return mcp_server


def register_tools(mcp_server: FastMCP, app: FeedReaderApp) -> None:
    """Register all feed tools with the server."""
    for tool_func in build_feed_tools(app):
        tool_name = tool_func.__name__
        mcp_server.tool(name=tool_name)(tool_func)
        logger.info(f"Registered feed tool: {tool_name}")

    logger.info(f"Server '{mcp_server.name}' tools registered")


async def _start_app(config: ServerConfig, recover: bool) -> FeedReaderApp:
    app = FeedReaderApp(config)
    try:
        await app.start(recover_from_backup=recover)
    except CorruptStore as e:
        hint = " Re-run with --recover to load the last good backup." if e.backup_path else ""
        raise click.ClickException(f"{e}.{hint} The corrupt file has not been modified.") from e
    except FeedSyncError as e:
        raise click.ClickException(str(e)) from e
    return app


@click.group()
@click.option("--recover", is_flag=True, default=False, help="Load the backup store if the main one is corrupt")
@click.pass_context
def cli(ctx: click.Context, recover: bool) -> None:
    """Track RSS feeds and pull new articles."""
    config = get_config()
    setup_logging(config)
    ctx.obj = {"config": config, "recover": recover}


@cli.command()
@click.option(
    "--port",
    default=3001,
    help="Port to listen on for SSE or Streamable HTTP transport"
)
@click.option(
    "--host",
    default="127.0.0.1",
    help="Host to bind to (use 0.0.0.0 for Docker)"
)
@click.option(
    "--transport",
    type=click.Choice(["stdio", "sse", "streamable-http"]),
    default="stdio",
    help="Transport type (stdio, sse, or streamable-http)"
)
@click.pass_context
def serve(ctx: click.Context, port: int, host: str, transport: str) -> None:
    """Run the feed_sync MCP server with the specified transport."""
    config: ServerConfig = ctx.obj["config"]

    async def run_server():
        """Inner async function to run the server and manage the event loop."""
        app = await _start_app(config, ctx.obj["recover"])
        server = create_mcp_server(app, config)
        try:
            if transport == "stdio":
                logger.info("Starting server with STDIO transport")
                await server.run_stdio_async()
            elif transport == "sse":
                logger.info(f"Starting server with SSE transport on {host}:{port}")
                server.settings.host = host
                server.settings.port = port
                await server.run_sse_async()
            elif transport == "streamable-http":
                logger.info(f"Starting server with Streamable HTTP transport on {host}:{port}")
                server.settings.host = host
                server.settings.port = port
                server.settings.streamable_http_path = "/mcp"
                await server.run_streamable_http_async()
            else:
                raise ValueError(f"Unknown transport: {transport}")
        finally:
            await app.close()

    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        logger.info("Server stopped by user")


def _run(ctx: click.Context, command):
    """Start the app, execute one command, flush, and return the result."""
    config: ServerConfig = ctx.obj["config"]

    async def run():
        app = await _start_app(config, ctx.obj["recover"])
        try:
            return await app.execute(command)
        finally:
            await app.close()

    result = asyncio.run(run())
    if not result.ok:
        raise click.ClickException(str(result.error))
    return result.value


@cli.command("add")
@click.argument("url")
@click.option("--title", default="", help="Display title")
@click.option("--category", default="", help="Free-text category")
@click.pass_context
def add_command(ctx: click.Context, url: str, title: str, category: str) -> None:
    """Start tracking the feed at URL."""
    feed = _run(ctx, AddFeed(url=url, title=title or None, category=category))
    click.echo(f"{feed.id}  {feed.url}")


@cli.command("remove")
@click.argument("feed_id")
@click.pass_context
def remove_command(ctx: click.Context, feed_id: str) -> None:
    """Stop tracking FEED_ID and delete its articles."""
    removed = _run(ctx, RemoveFeed(feed_id=feed_id))
    click.echo(f"Removed {feed_id} and {removed} articles")


@cli.command("list")
@click.pass_context
def list_command(ctx: click.Context) -> None:
    """List tracked feeds."""
    config: ServerConfig = ctx.obj["config"]

    async def run():
        app = await _start_app(config, ctx.obj["recover"])
        try:
            return app.snapshot()
        finally:
            await app.close()

    snapshot = asyncio.run(run())
    for view in snapshot.feeds:
        status = f"error: {view.feed.last_error}" if view.feed.last_error else "ok"
        click.echo(f"{view.feed.id}  {view.unread_count:>4} unread  {view.feed.title}  ({status})")


@cli.command("refresh")
@click.pass_context
def refresh_command(ctx: click.Context) -> None:
    """Refresh every feed once and report the outcome per feed."""
    outcomes = _run(ctx, RefreshAll())
    for feed_id, outcome in outcomes.items():
        if isinstance(outcome, Updated):
            click.echo(f"{feed_id}  {outcome.new_count} new")
        elif isinstance(outcome, Failed):
            click.echo(f"{feed_id}  failed: {outcome.error}")
        else:
            click.echo(f"{feed_id}  unchanged")


def main() -> int:
    """Console script entry point."""
    try:
        cli(standalone_mode=False)
        return 0
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.Abort:
        return 1
    except Exception as e:
        logging.getLogger("feed_sync").error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
