"""
cmadmin command line.

Global options select the provider and config directory; each command
builds a CMClient from `<config_dir>/cmadmin.json` plus those overrides.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import typer
from pydantic import SecretStr
from rich.console import Console

from cmadmin import __version__
from cmadmin.application.client import CMClient
from cmadmin.application.operations import (
    ClientOperation,
    add_driver_to_package,
    create_driver_package,
    distribute_content,
    export_task_sequence,
    find_driver_package,
    import_driver,
    import_task_sequence,
    initiate_client_operation,
    move_items,
    remove_content,
)
from cmadmin.domain.errors import CMError
from cmadmin.domain.models import Credential, MethodResult
from cmadmin.infrastructure.config import ConfigRepository, CredentialManager
from cmadmin.infrastructure.logging_config import setup_logging
from cmadmin.interface.formatters import connection_table, method_result_panel, objects_table

logger = logging.getLogger(__name__)

console = Console()

app = typer.Typer(
    name="cmadmin",
    help="Configuration Manager provider client",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)
folder_app = typer.Typer(help="Console folders", no_args_is_help=True)
ts_app = typer.Typer(help="Task sequence export/import", no_args_is_help=True)
driver_app = typer.Typer(help="Driver catalog", no_args_is_help=True)
package_app = typer.Typer(help="Package content distribution", no_args_is_help=True)
credential_app = typer.Typer(help="Stored credentials", no_args_is_help=True)

app.add_typer(folder_app, name="folder")
app.add_typer(ts_app, name="ts")
app.add_typer(driver_app, name="driver")
app.add_typer(package_app, name="package")
app.add_typer(credential_app, name="credential")


@dataclass
class CliState:
    config_dir: Path
    provider_server: Optional[str] = None
    site_code: Optional[str] = None
    credential_ref: Optional[str] = None
    master_password: Optional[str] = None


def build_client(state: CliState) -> CMClient:
    return CMClient.from_config(
        state.config_dir,
        master_password=state.master_password,
        provider_server=state.provider_server,
        site_code=state.site_code,
        credential_ref=state.credential_ref,
    )


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(1)


def _with_client(ctx: typer.Context, action: Callable[[CMClient], Any]) -> Any:
    """Run `action` against a fresh client; fatal errors exit 1."""
    try:
        with build_client(ctx.obj) as client:
            return action(client)
    except (CMError, ValueError, OSError) as e:
        logger.debug("Command failed", exc_info=True)
        _fail(str(e))


def _report(result: MethodResult) -> None:
    console.print(method_result_panel(result))
    if not result.succeeded:
        console.print(
            f"[yellow]Warning:[/yellow] {result.class_name}.{result.method_name} "
            f"returned {result.return_value}"
        )


def parse_arguments(pairs: Optional[List[str]]) -> Dict[str, Any]:
    """
    `NAME=VALUE` pairs to a method argument dict.

    VALUE is read as JSON when it parses (numbers, booleans, lists),
    otherwise kept as a string.
    """
    arguments: Dict[str, Any] = {}
    for pair in pairs or []:
        name, sep, raw = pair.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Expected NAME=VALUE, got {pair!r}")
        try:
            value = json.loads(raw)
        except ValueError:
            value = raw
        arguments[name.strip()] = value
    return arguments


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"cmadmin {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(  # pylint: disable=too-many-arguments
    ctx: typer.Context,
    provider_server: Optional[str] = typer.Option(
        None, "--provider-server", "-s", help="Entry host for provider lookup"
    ),
    site_code: Optional[str] = typer.Option(None, "--site-code", "-c", help="Three-character site code"),
    credential_ref: Optional[str] = typer.Option(
        None, "--credential-ref", help="Stored credential for provider sessions"
    ),
    config_dir: Path = typer.Option(Path("config"), "--config-dir", help="Settings and credentials directory"),
    master_password: Optional[str] = typer.Option(
        None, "--master-password", envvar="CMADMIN_MASTER_PASSWORD", hide_input=True,
        help="Decrypts stored credentials",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also log to this file"),
    version: bool = typer.Option(  # pylint: disable=unused-argument
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """
    Administer a Configuration Manager site through its SMS provider.
    """
    setup_logging(logging.DEBUG if verbose else logging.INFO, str(log_file) if log_file else None)
    ctx.obj = CliState(
        config_dir=config_dir,
        provider_server=provider_server,
        site_code=site_code,
        credential_ref=credential_ref,
        master_password=master_password,
    )


@app.command()
def connect(ctx: typer.Context):
    """Resolve the provider for the site and show the connection."""
    def action(client: CMClient):
        client.connect()
        console.print(connection_table(client.connection))
    _with_client(ctx, action)


@app.command()
def query(
    ctx: typer.Context,
    class_name: str = typer.Argument(..., help="Provider class, e.g. SMS_Package"),
    filter_text: str = typer.Option("", "--filter", "-f", help="WQL condition"),
    properties: Optional[List[str]] = typer.Option(None, "--property", "-p", help="Columns to show"),
    join: bool = typer.Option(False, "--join", help="Filter is a JOIN clause (text after FROM class)"),
    lazy: bool = typer.Option(False, "--lazy", help="Class has lazy properties"),
    limit: int = typer.Option(0, "--limit", min=0, help="Show at most N rows (0 = all)"),
):
    """Query instances of a provider class."""
    def action(client: CMClient):
        objects = list(client.query(class_name, filter_text, requires_join=join, lazy_properties=lazy))
        if limit:
            objects = objects[:limit]
        console.print(objects_table(class_name, objects, properties))
    _with_client(ctx, action)


@app.command()
def invoke(
    ctx: typer.Context,
    class_name: str = typer.Argument(..., help="Provider class"),
    method_name: str = typer.Argument(..., help="Static method to call"),
    args: Optional[List[str]] = typer.Option(None, "--arg", "-a", help="NAME=VALUE (repeatable)"),
):
    """Invoke a static provider method."""
    arguments = parse_arguments(args)
    _with_client(ctx, lambda client: _report(client.invoke(class_name, method_name, arguments)))


@app.command("client-op")
def client_op(
    ctx: typer.Context,
    operation: str = typer.Argument(..., help="e.g. request-machine-policy, hardware-inventory"),
    collection_id: str = typer.Argument(..., help="Target collection ID"),
    resource_ids: Optional[List[int]] = typer.Option(None, "--resource-id", "-r", help="Limit to resources"),
    random_minutes: int = typer.Option(0, "--random-minutes", min=0, help="Randomization window"),
):
    """Push a client notification to a collection."""
    try:
        parsed = ClientOperation.parse(operation)
    except CMError as e:
        _fail(str(e))
    _with_client(ctx, lambda client: _report(
        initiate_client_operation(client, parsed, collection_id, resource_ids, random_minutes)
    ))


@folder_app.command("move")
def folder_move(
    ctx: typer.Context,
    item_ids: List[str] = typer.Argument(..., help="Instance keys of the items"),
    object_type: int = typer.Option(..., "--object-type", "-t", help="Folder tree object type"),
    source: int = typer.Option(..., "--source", help="Source folder id (0 = root)"),
    target: int = typer.Option(..., "--target", help="Target folder id (0 = root)"),
):
    """Move items between two folders of the same tree."""
    _with_client(ctx, lambda client: _report(move_items(client, item_ids, object_type, source, target)))


@ts_app.command("export")
def ts_export(
    ctx: typer.Context,
    package_id: str = typer.Argument(..., help="Task sequence PackageID"),
    path: Path = typer.Argument(..., help="Output XML file"),
):
    """Export a task sequence to XML."""
    def action(client: CMClient):
        written = export_task_sequence(client, package_id, path)
        console.print(f"[green]Exported[/green] {package_id} to {written}")
    _with_client(ctx, action)


@ts_app.command("import")
def ts_import(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Task sequence XML file"),
    name: str = typer.Argument(..., help="Name of the new package"),
    description: str = typer.Option("", "--description"),
):
    """Create a task sequence package from exported XML."""
    def action(client: CMClient):
        package_id = import_task_sequence(client, path, name, description)
        console.print(f"[green]Imported[/green] {name} ({package_id or 'PackageID not reported'})")
    _with_client(ctx, action)


@driver_app.command("import")
def driver_import(
    ctx: typer.Context,
    inf_paths: List[str] = typer.Argument(..., help="UNC paths of INF files"),
    package_name: Optional[str] = typer.Option(None, "--package", help="Also add to this driver package"),
    package_source: Optional[str] = typer.Option(
        None, "--package-source", help="Source path when the package has to be created"
    ),
    disabled: bool = typer.Option(False, "--disabled", help="Import drivers disabled"),
):
    """Import drivers into the catalog, optionally into a driver package."""
    def action(client: CMClient):
        package = None
        if package_name:
            package = find_driver_package(client, package_name)
            if package is None:
                if not package_source:
                    _fail(f"Driver package {package_name!r} not found and no --package-source given")
                package = create_driver_package(client, package_name, package_source)

        imported = 0
        for inf in inf_paths:
            try:
                driver = import_driver(client, inf, enable=not disabled)
            except CMError as e:
                console.print(f"[yellow]Warning:[/yellow] {inf}: {e}")
                continue
            imported += 1
            if package is not None:
                _report(add_driver_to_package(client, driver, package))
        console.print(f"[green]Imported {imported} of {len(inf_paths)} driver(s)[/green]")
    _with_client(ctx, action)


@package_app.command("distribute")
def package_distribute(
    ctx: typer.Context,
    package_id: str = typer.Argument(...),
    dp_names: Optional[List[str]] = typer.Option(None, "--dp", help="Distribution point FQDN (repeatable)"),
    group_names: Optional[List[str]] = typer.Option(None, "--group", help="DP group name (repeatable)"),
):
    """Distribute package content to DPs and/or DP groups."""
    def action(client: CMClient):
        for result in distribute_content(client, package_id, dp_names, group_names):
            _report(result)
    _with_client(ctx, action)


@package_app.command("remove")
def package_remove(
    ctx: typer.Context,
    package_id: str = typer.Argument(...),
    dp_names: Optional[List[str]] = typer.Option(None, "--dp", help="Distribution point FQDN (repeatable)"),
    group_names: Optional[List[str]] = typer.Option(None, "--group", help="DP group name (repeatable)"),
):
    """Remove package content from DPs and/or DP groups."""
    def action(client: CMClient):
        removed = remove_content(client, package_id, dp_names, group_names)
        console.print(f"Removed {package_id} from {removed} target(s)")
    _with_client(ctx, action)


@credential_app.command("save")
def credential_save(
    ctx: typer.Context,
    cred_ref: str = typer.Argument(..., help="Reference name"),
    username: str = typer.Option(..., "--username", "-u", help="DOMAIN\\user"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
):
    """Store a credential (encrypted when a master password is given)."""
    state: CliState = ctx.obj
    try:
        manager = CredentialManager(ConfigRepository(state.config_dir), state.master_password)
        manager.save_credential(cred_ref, Credential(username=username, password=SecretStr(password)))
    except (ValueError, OSError) as e:
        _fail(str(e))
    console.print(f"[green]Saved credential[/green] {cred_ref}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
