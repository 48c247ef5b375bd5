"""packsync CLI — sync pack definitions into a CMS graph store."""

from __future__ import annotations

import sys

import click
from rich.console import Console
from rich.table import Table

from packsync import __version__

console = Console()

_STATUS_STYLE = {
    "published": "green",
    "skipped": "dim",
    "ignored": "yellow",
    "failed": "red",
}


@click.group()
@click.version_option(version=__version__)
def main():
    """packsync — synchronize deployment packs into a CMS graph store.

    Resolves the version each pack maps to (immutable semver patches or a
    single mutable version) and reconciles the remote CI/relation graph
    with the local pack definition.
    """


def _build_client(config):
    """HTTP client when an endpoint is configured, local file store otherwise."""
    if config.endpoint:
        from packsync.cms.http import HttpResourceClient

        return HttpResourceClient(config.endpoint)

    from packsync.cms.local import LocalResourceClient
    from packsync.cms.schemas import SchemaRegistry, load_schemas

    schemas = SchemaRegistry.builtin()
    for path in config.schema_files:
        for schema in load_schemas(path):
            schemas.register(schema)
    return LocalResourceClient(schemas=schemas, store_dir=config.store_dir or ".packsync_store")


# ── Sync ─────────────────────────────────────────────────────────────


@main.command()
@click.argument("packs", nargs=-1)
@click.option("--all", "all_packs", is_flag=True, help="Sync every pack on the search path")
@click.option("--register", "-r", default=None, help="Source group (register) to publish under")
@click.option("--version", "-v", "default_version", default=None, help="Default pack version")
@click.option("--pack-path", "-o", default=None, help="Colon-separated pack search path")
@click.option("--reload", is_flag=True, default=None, help="Republish even when the signature matches")
@click.option("--semver", is_flag=True, default=None, help="Publish immutable semver patch versions")
@click.option("--msg", "-m", default=None, help="Comment appended to every written item")
@click.option("--config", "config_file", default=None, type=click.Path(exists=True), help="YAML config file")
@click.option("--endpoint", default=None, help="CMS REST endpoint (local store when omitted)")
@click.option("--store-dir", default=None, help="Local store directory")
@click.option("--schema", "schema_files", multiple=True, type=click.Path(exists=True), help="Class schema YAML")
@click.option("--log-dir", default=None, type=click.Path(), help="Directory for JSONL logs")
@click.option("--verbose", count=True, help="Log at info level; pass twice for debug")
def sync(
    packs: tuple,
    all_packs: bool,
    register: str | None,
    default_version: str | None,
    pack_path: str | None,
    reload: bool | None,
    semver: bool | None,
    msg: str | None,
    config_file: str | None,
    endpoint: str | None,
    store_dir: str | None,
    schema_files: tuple,
    log_dir: str | None,
    verbose: int,
):
    """Sync packs into the graph store.

    PACKS are pack names looked up as NAME.yaml on the search path, or
    paths to pack files. Use --all to sync every pack found.
    """
    from pathlib import Path

    from packsync.config import load_config
    from packsync.errors import PackSyncError
    from packsync.logging import setup_logging
    from packsync.sync.orchestrator import PackSyncOrchestrator
    from packsync.sync.report import PackStatus

    if not packs and not all_packs:
        console.print("[red]You must specify the pack name or use the --all option.[/]")
        sys.exit(1)

    try:
        config = load_config(
            config_file,
            register=register,
            default_version=default_version,
            pack_path=pack_path,
            reload=reload or None,
            semver=semver or None,
            msg=msg,
            endpoint=endpoint,
            store_dir=store_dir,
            schema_files=list(schema_files) or None,
            log_dir=log_dir,
        )
    except PackSyncError as e:
        console.print(f"[red]{e}[/]")
        sys.exit(1)

    setup_logging(Path(config.log_dir) if config.log_dir else None, verbosity=verbose)

    console.print(f"\n[bold blue]packsync[/] — Syncing into {config.packs_ns}\n")

    try:
        client = _build_client(config)
        report = PackSyncOrchestrator(client, config).run(list(packs), all_packs=all_packs)
    except PackSyncError as e:
        console.print(f"[red]error:[/] {e}")
        console.print("[red]No packs loaded.[/]")
        sys.exit(1)

    table = Table(title=f"Pack Sync ({len(report.results)} packs)")
    table.add_column("Pack", style="cyan")
    table.add_column("Version")
    table.add_column("Status", justify="center")
    table.add_column("Items", justify="right")
    table.add_column("Detail")

    for result in report.results:
        style = _STATUS_STYLE.get(result.status.value, "")
        items = sum(len(r.outcomes) for r in result.environments)
        detail = result.error or result.reason
        failed_items = len(result.item_failures)
        if failed_items:
            detail = f"{detail} ({failed_items} item(s) failed)"
        table.add_row(
            result.pack,
            result.version or "-",
            f"[{style}]{result.status.value}[/]" if style else result.status.value,
            str(items),
            detail[:60],
        )

    console.print(table)
    counts = [f"{len(report.by_status(status))} {status.value}" for status in PackStatus if report.by_status(status)]
    if counts:
        console.print(", ".join(counts))

    if not report.ok:
        console.print("[red]exiting[/]")
        sys.exit(1)


# ── Register ─────────────────────────────────────────────────────────


@main.command()
@click.argument("register")
@click.option("--nspath", default="/public", help="Store root namespace")
@click.option("--store-dir", default=".packsync_store", help="Local store directory")
def register(register: str, nspath: str, store_dir: str):
    """Create the packs namespace for REGISTER in a local store."""
    from packsync.cms.local import LocalResourceClient
    from packsync.config import SyncConfig

    config = SyncConfig(register=register, nspath=nspath)
    client = LocalResourceClient(store_dir=store_dir)
    client.ensure_namespace(config.packs_ns)
    console.print(f"  Registered: [cyan]{config.packs_ns}[/]")


if __name__ == "__main__":
    main()
