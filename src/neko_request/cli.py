"""Command line request lab for neko-request."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .api_clients import (
    HttpRefreshExchanger,
    NetworkError,
    RequestClient,
    RequestClientError,
    Response,
)
from .api_clients.models import SUPPORTED_METHODS
from .config import ConfigManager
from .storage import FileTokenStorage, TokenStorageError

logger = logging.getLogger(__name__)

console = Console()


def run_async(coro):
    """Run a coroutine from synchronous click command code."""
    return asyncio.run(coro)


def _mask(token: Optional[str]) -> str:
    if not token:
        return "[dim](none)[/dim]"
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}…{token[-4:]}"


def _parse_headers(values: Tuple[str, ...]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise click.BadParameter(
                f"expected 'Name: value', got '{value}'", param_hint="--header"
            )
        headers[name.strip()] = content.strip()
    return headers


def _parse_params(values: Tuple[str, ...]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for value in values:
        key, sep, content = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(
                f"expected 'key=value', got '{value}'", param_hint="--param"
            )
        existing = params.get(key)
        if existing is None:
            params[key] = content
        elif isinstance(existing, list):
            existing.append(content)
        else:
            params[key] = [existing, content]
    return params


def _parse_body(value: Optional[str]) -> Any:
    if value is None or not value.strip():
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"JSON parse failed: {e}", param_hint="--data")


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    help="Config file path (default: .neko-request/config.json)",
)
@click.option(
    "--tokens-file",
    type=click.Path(path_type=Path),
    help="Token file path (default: .neko-request/tokens.json)",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(__version__, prog_name="neko-request")
@click.pass_context
def cli(ctx, config_path: Optional[Path], tokens_file: Optional[Path], verbose: bool):
    """Send authenticated requests and manage stored tokens.

    \b
    Examples:
      neko-request tokens set ACCESS REFRESH
      neko-request send /api/config/page_config -p lanlan_name=test
      neko-request send /api/items -X POST -d '{"name": "neko"}'
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_manager"] = ConfigManager(config_path)
    ctx.obj["token_storage"] = FileTokenStorage(tokens_file)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)


@cli.command("send")
@click.argument("path", default="/")
@click.option(
    "--method",
    "-X",
    type=click.Choice(SUPPORTED_METHODS, case_sensitive=False),
    default="GET",
    show_default=True,
    help="HTTP method",
)
@click.option("--header", "-H", "headers", multiple=True, help="Header as 'Name: value'")
@click.option("--param", "-p", "params", multiple=True, help="Query parameter as key=value")
@click.option("--data", "-d", "body", help="JSON request body (ignored for GET/DELETE)")
@click.pass_context
def send_command(ctx, path: str, method: str, headers, params, body: Optional[str]):
    """Send one request through the authenticated client."""
    try:
        config = ctx.obj["config_manager"].load()
    except ValueError as e:
        console.print(f"❌ {e}", style="red", markup=False)
        sys.exit(1)

    method = method.upper()
    request_headers = _parse_headers(headers)
    request_params = _parse_params(params)
    request_body = None if method in ("GET", "DELETE") else _parse_body(body)

    # The lab always shows the full envelope
    config = config.model_copy(update={"return_data_only": False})
    storage = ctx.obj["token_storage"]

    async def _send() -> Response:
        async with HttpRefreshExchanger(
            config.base_url, config.refresh_path, timeout=config.refresh_timeout
        ) as exchanger:
            async with RequestClient(config, storage, exchanger) as client:
                return await client.request(
                    path.strip() or "/",
                    method=method,
                    headers=request_headers or None,
                    params=request_params or None,
                    data=request_body,
                )

    try:
        response = run_async(_send())
    except RequestClientError as e:
        console.print(f"❌ Request failed ({e.kind.value}): {e}", style="red", markup=False)
        if isinstance(e, NetworkError) and e.user_guidance:
            console.print(e.user_guidance)
        sys.exit(1)
    except TokenStorageError as e:
        console.print(f"❌ Token storage error: {e}", style="red", markup=False)
        sys.exit(1)

    status_style = "green" if response.ok else "yellow"
    console.print(
        f"Request completed ({response.status} {response.status_text})",
        style=status_style,
    )
    console.print_json(
        json.dumps({"ok": True, **response.to_dict()}, default=str, ensure_ascii=False)
    )


@cli.group("tokens")
def tokens_group():
    """Manage stored access and refresh tokens."""


@tokens_group.command("set")
@click.argument("access_token")
@click.argument("refresh_token")
@click.pass_context
def tokens_set(ctx, access_token: str, refresh_token: str):
    """Store an access/refresh token pair."""
    storage = ctx.obj["token_storage"]

    async def _store() -> None:
        await storage.set_access_token(access_token.strip())
        await storage.set_refresh_token(refresh_token.strip())

    run_async(_store())
    console.print(f"✅ Tokens saved to {storage.token_file_path}", style="green")


@tokens_group.command("show")
@click.option("--reveal", is_flag=True, help="Print tokens unmasked")
@click.pass_context
def tokens_show(ctx, reveal: bool):
    """Show the stored tokens."""
    storage = ctx.obj["token_storage"]

    async def _load() -> Tuple[Optional[str], Optional[str]]:
        return await storage.get_access_token(), await storage.get_refresh_token()

    try:
        access_token, refresh_token = run_async(_load())
    except TokenStorageError as e:
        console.print(f"❌ {e}", style="red", markup=False)
        sys.exit(1)

    table = Table(title="Stored Tokens")
    table.add_column("Token", style="cyan")
    table.add_column("Value")
    for name, value in (("access", access_token), ("refresh", refresh_token)):
        if reveal and value:
            table.add_row(name, value)
        else:
            table.add_row(name, _mask(value))
    console.print(table)


@tokens_group.command("clear")
@click.pass_context
def tokens_clear(ctx):
    """Remove the stored tokens."""
    run_async(ctx.obj["token_storage"].clear_tokens())
    console.print("✅ Tokens cleared", style="green")


@cli.group("config")
def config_group():
    """Show or change the client configuration."""


@config_group.command("show")
@click.pass_context
def config_show(ctx):
    """Show the effective configuration."""
    config_manager = ctx.obj["config_manager"]
    try:
        config = config_manager.load()
    except ValueError as e:
        console.print(f"❌ {e}", style="red", markup=False)
        sys.exit(1)

    table = Table(title=f"Configuration ({config_manager.config_path})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in config.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


@config_group.command("set")
@click.option("--base-url", help="Base URL of the API server")
@click.option("--refresh-path", help="Path of the token refresh endpoint")
@click.option("--request-timeout", type=float, help="Per-request timeout in seconds")
@click.option("--refresh-timeout", type=float, help="Token refresh timeout in seconds")
@click.option(
    "--log-requests/--no-log-requests", default=None, help="Log every exchange"
)
@click.pass_context
def config_set(ctx, **options):
    """Update configuration values."""
    changes = {key: value for key, value in options.items() if value is not None}
    if not changes:
        raise click.UsageError("Nothing to change; pass at least one option")

    try:
        config = ctx.obj["config_manager"].update(**changes)
    except ValueError as e:
        console.print(f"❌ Invalid configuration: {e}", style="red", markup=False)
        sys.exit(1)

    for key in changes:
        console.print(f"✅ {key} = {getattr(config, key)}", style="green")


def main():
    """Main entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n❌ Interrupted by user", style="red")
        sys.exit(1)
    except Exception as e:
        console.print(f"❌ Unexpected error: {str(e)}", style="red", markup=False)
        sys.exit(1)


if __name__ == "__main__":
    main()
