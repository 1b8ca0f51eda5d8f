"""Command-line interface for sf-file-flow."""

from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .lib import conf_lib
from .lib.internal.exceptions import StateError
from .lib.internal.ui import _show_error_panel, _show_warning_panel
from .lib.scratch import cleanup_scratch_dir, scratch_dir_for
from .lib.state import StateStore
from .logging_config import setup_logging
from .migrator import run_migration


@click.group()
@click.version_option(package_name="sf-file-flow")
@click.option(
    "-v", "--verbose", is_flag=True, help="Enable verbose, debug-level logging."
)
def cli(verbose):
    """SF File Flow: migrate files and their record links between two stores."""
    setup_logging(verbose)


# --- Migrate Command ---
@click.command(name="migrate")
@click.option(
    "-s",
    "--source-config",
    required=True,
    help="Path to the source store connection config.",
)
@click.option(
    "-t",
    "--target-config",
    required=True,
    help="Path to the target store connection config.",
)
@click.option(
    "-o", "--object", "object_name", required=True, help="Object whose files to migrate."
)
@click.option(
    "-m",
    "--match-field",
    required=True,
    help="Source field used to match records with the target.",
)
@click.option(
    "--target-match-field",
    default=None,
    help="Target field to match on. Defaults to --match-field.",
)
@click.option(
    "-w", "--where", default=None, help="Filter applied to the source records."
)
@click.option(
    "-d",
    "--dry-run",
    is_flag=True,
    default=False,
    help="Report what would be migrated without changing the target.",
)
@click.option(
    "-r",
    "--resume",
    is_flag=True,
    default=False,
    help="Resume a previously paused or failed migration.",
)
@click.option(
    "--state-dir",
    default=None,
    help="Directory holding saved migration states.",
)
@click.option(
    "--error-file",
    default=None,
    help="Write the errors of the run to this CSV file.",
)
@click.option(
    "--no-preflight-checks",
    is_flag=True,
    default=False,
    help="Skip the connection and match field checks.",
)
def migrate_cmd(**kwargs):
    """Migrates the files linked to matching records."""
    results = run_migration(**kwargs)
    if results is None:
        raise click.exceptions.Exit(1)


# --- States Command Group ---
@click.group(name="states")
def states_group():
    """Inspect and discard saved migration states."""
    pass


@states_group.command(name="list")
@click.option("--state-dir", default=None, help="Directory holding saved states.")
def states_list_cmd(state_dir):
    """Lists the saved migration states that can be resumed."""
    summaries = StateStore(state_dir).list()
    console = Console()
    if not summaries:
        console.print("No saved migration states.")
        return

    table = Table(title="Saved Migrations")
    table.add_column("State ID", style="cyan")
    table.add_column("Object")
    table.add_column("Match")
    table.add_column("Filter")
    table.add_column("Status")
    table.add_column("Completed", justify="right")
    table.add_column("Updated")
    for summary in summaries:
        config = summary.config
        table.add_row(
            summary.state_id,
            config.object_name,
            f"{config.source_match_field} -> {config.target_match_field}",
            escape(config.where_clause or ""),
            summary.status.value,
            str(summary.completed_count),
            summary.updated_at,
        )
    console.print(table)


@states_group.command(name="discard")
@click.argument("state_id")
@click.option("--state-dir", default=None, help="Directory holding saved states.")
def states_discard_cmd(state_id, state_dir):
    """Deletes a saved state and its scratch files."""
    store = StateStore(state_dir)
    try:
        state = store.load(state_id)
    except StateError as e:
        _show_warning_panel(
            "Unreadable State", f"{e.message}\n\nDiscarding it anyway."
        )
        temp_dir = scratch_dir_for(state_id)
    else:
        if state is None:
            _show_error_panel("No Saved State", f"No saved state '{state_id}'.")
            raise click.exceptions.Exit(1)
        temp_dir = Path(state.temp_dir)
    store.delete(state_id)
    cleanup_scratch_dir(temp_dir)
    Console().print(f"Discarded migration state '{state_id}'.")


# --- Fields Command ---
@click.command(name="fields")
@click.option("-c", "--config", required=True, help="Path to a connection config.")
@click.option("-o", "--object", "object_name", required=True, help="Object to describe.")
@click.option(
    "--all", "show_all", is_flag=True, default=False, help="List every field."
)
def fields_cmd(config, object_name, show_all):
    """Lists the fields of an object that are good match field candidates."""
    try:
        conn = conf_lib.get_connection_from_config(config)
        fields = conn.describe(object_name)
    except Exception as e:
        _show_error_panel("Describe Failed", f"Could not describe '{object_name}': {e}")
        raise click.exceptions.Exit(1) from e

    if not show_all:
        fields = [
            f
            for f in fields
            if f.get("externalId")
            or f.get("unique")
            or f.get("idLookup")
            or f.get("name") == "Name"
        ]

    table = Table(title=f"{object_name} fields")
    table.add_column("Name", style="cyan")
    table.add_column("Label")
    table.add_column("Type")
    table.add_column("Flags")
    for f in fields:
        flags = [
            label
            for key, label in (
                ("externalId", "External ID"),
                ("unique", "Unique"),
                ("idLookup", "IdLookup"),
            )
            if f.get(key)
        ]
        table.add_row(f["name"], f.get("label", ""), f.get("type", ""), ", ".join(flags))
    Console().print(table)


cli.add_command(migrate_cmd)
cli.add_command(states_group)
cli.add_command(fields_cmd)

if __name__ == "__main__":
    cli()
