"""Command-line interface for testing directory configuration."""

from __future__ import annotations

import json
from pathlib import Path

import click
import structlog
from safir.asyncio import run_with_asyncio
from safir.click import display_help

from .config import Config
from .constants import CONFIG_PATH
from .exceptions import InputValidationError, LDAPError
from .factory import Factory
from .models.principal import PrincipalKind

__all__ = [
    "groups",
    "help",
    "login",
    "lookup",
    "main",
    "search",
]

_config_path_option = click.option(
    "--config-path",
    envvar="PORTHOR_CONFIG_PATH",
    type=click.Path(path_type=Path),
    default=CONFIG_PATH,
    help="Application configuration file.",
)


def _load_config(config_path: Path) -> Config:
    config = Config.from_file(config_path)
    config.configure_logging()
    return config


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="%(version)s")
def main() -> None:
    """Command-line interface for porthor."""


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic)


@main.command()
@click.argument("username")
@click.password_option(confirmation_prompt=False)
@_config_path_option
@run_with_asyncio
async def login(*, username: str, password: str, config_path: Path) -> None:
    """Authenticate a user and show the resolved identity."""
    config = _load_config(config_path)
    logger = structlog.get_logger("porthor")
    async with Factory.standalone(config, logger) as factory:
        auth_service = factory.create_authentication_service()
        try:
            identity = await auth_service.authenticate(username, password)
        except (InputValidationError, LDAPError) as e:
            raise click.ClickException(str(e)) from e
    click.echo(identity.model_dump_json(indent=2))


@main.command()
@click.argument("name")
@click.option(
    "--kind",
    type=click.Choice([k.value for k in PrincipalKind]),
    default=None,
    help="Only search for users or groups.",
)
@_config_path_option
@run_with_asyncio
async def search(*, name: str, kind: str | None, config_path: Path) -> None:
    """Search for users and groups whose names start with NAME."""
    config = _load_config(config_path)
    principal_kind = PrincipalKind(kind) if kind else None
    async with Factory.standalone(config) as factory:
        search_service = factory.create_search_service()
        try:
            principals = await search_service.search(name, principal_kind)
        except (InputValidationError, LDAPError) as e:
            raise click.ClickException(str(e)) from e
    result = [p.model_dump(mode="json") for p in principals]
    click.echo(json.dumps(result, indent=2))


@main.command()
@click.argument("principal_id")
@_config_path_option
@run_with_asyncio
async def lookup(*, principal_id: str, config_path: Path) -> None:
    """Show the user or group with the given principal ID."""
    config = _load_config(config_path)
    async with Factory.standalone(config) as factory:
        search_service = factory.create_search_service()
        try:
            principal = await search_service.get_principal(principal_id)
        except (InputValidationError, LDAPError) as e:
            raise click.ClickException(str(e)) from e
    click.echo(principal.model_dump_json(indent=2))


@main.command()
@click.argument("principal_id")
@_config_path_option
@run_with_asyncio
async def groups(*, principal_id: str, config_path: Path) -> None:
    """Show the current groups of the user with the given principal ID."""
    config = _load_config(config_path)
    async with Factory.standalone(config) as factory:
        auth_service = factory.create_authentication_service()
        try:
            principals = await auth_service.refetch_groups(principal_id)
        except (InputValidationError, LDAPError) as e:
            raise click.ClickException(str(e)) from e
    result = [p.model_dump(mode="json") for p in principals]
    click.echo(json.dumps(result, indent=2))
