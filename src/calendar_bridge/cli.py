"""CLI for the calendar bridge: serve the API or the MCP server, inspect tools."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
import httpx
import uvicorn

from calendar_bridge import __version__
from calendar_bridge.api.app import create_app
from calendar_bridge.auth import TokenCache
from calendar_bridge.calendar_client import build_calendar_client
from calendar_bridge.config import BridgeConfig, ConfigError, default_config, load_config
from calendar_bridge.core.logging import configure_logging
from calendar_bridge.kv import create_kv_store
from calendar_bridge.mcp_server import build_mcp_server
from calendar_bridge.tools import ToolDispatcher, ToolInvocation, ToolResult, manifest_payload

logger = logging.getLogger(__name__)

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to bridge.toml (or a directory containing it)",
)


def _load(config_path: Path | None) -> BridgeConfig:
    if config_path is None:
        return default_config()
    try:
        return load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(1)


def _configure_logging(config: BridgeConfig) -> None:
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_file=config.logging.log_file,
        service_name=config.name,
    )


def _parse_params(raw_params: tuple[str, ...]) -> dict[str, str]:
    """Turn ``key=value`` pairs into a parameter mapping of strings."""
    parameters: dict[str, str] = {}
    for raw in raw_params:
        key, sep, value = raw.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {raw!r}", param_hint="--param")
        parameters[key] = value
    return parameters


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Calendar bridge: Google Calendar tools over MCP/SSE and REST."""


@cli.command()
@_config_option
@click.option("--host", default=None, help="Override bridge.host")
@click.option("--port", type=int, default=None, help="Override bridge.port")
def serve(config_path: Path | None, host: str | None, port: int | None) -> None:
    """Run the HTTP API (REST, /sse, /execute) with uvicorn."""
    config = _load(config_path)
    _configure_logging(config)
    app = create_app(config)
    bind_host = host or config.host
    bind_port = port or config.port
    click.echo(f"Serving {config.name} on http://{bind_host}:{bind_port}")
    uvicorn.run(app, host=bind_host, port=bind_port, log_level="info", log_config=None)


@cli.command()
@_config_option
@click.option("--port", type=int, default=None, help="Override bridge.port")
def mcp(config_path: Path | None, port: int | None) -> None:
    """Run the tools as a standard MCP server over SSE."""
    config = _load(config_path)
    _configure_logging(config)
    asyncio.run(_serve_mcp(config, port or config.port))


async def _serve_mcp(config: BridgeConfig, port: int) -> None:
    kv_store = create_kv_store(config.credentials)
    token_cache = TokenCache() if config.credentials.token_cache else None
    async with httpx.AsyncClient(timeout=config.http_timeout_s) as http_client:
        dispatcher = ToolDispatcher(
            lambda: build_calendar_client(config, kv_store, http_client, token_cache)
        )
        server = build_mcp_server(dispatcher, name=config.name)
        app = server.http_app(transport="sse")
        uvicorn_config = uvicorn.Config(
            app,
            host=config.host,
            port=port,
            log_level="info",
            log_config=None,
            timeout_graceful_shutdown=0,
        )
        logger.info("Starting MCP SSE server %s on %s:%d", config.name, config.host, port)
        try:
            await uvicorn.Server(uvicorn_config).serve()
        finally:
            await kv_store.close()


@cli.command()
def manifest() -> None:
    """Print the tool manifest as JSON."""
    click.echo(json.dumps(manifest_payload(), indent=2))


@cli.command()
@click.argument("tool")
@click.option("--param", "raw_params", multiple=True, help="Tool parameter as key=value")
@_config_option
def call(tool: str, raw_params: tuple[str, ...], config_path: Path | None) -> None:
    """Dispatch one tool invocation and print the result as JSON."""
    config = _load(config_path)
    invocation = ToolInvocation(tool=tool, parameters=_parse_params(raw_params))
    result = asyncio.run(_dispatch_once(config, invocation))
    click.echo(json.dumps(result.to_payload(), indent=2))
    if not result.ok:
        sys.exit(1)


async def _dispatch_once(config: BridgeConfig, invocation: ToolInvocation) -> ToolResult:
    kv_store = create_kv_store(config.credentials)
    try:
        async with httpx.AsyncClient(timeout=config.http_timeout_s) as http_client:
            dispatcher = ToolDispatcher(
                lambda: build_calendar_client(config, kv_store, http_client)
            )
            return await dispatcher.dispatch(invocation)
    finally:
        await kv_store.close()


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
