"""Migrate files between two stores.

This module is the driver of a migration run. It turns the connection
configuration into store handles, finds or creates the checkpoint of the
job, runs the transfer engine with cancellation wired to Ctrl+C, and
persists or discards the checkpoint depending on how the run ended.
"""

import time
from typing import Callable, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .enums import MigrationStatus
from .file_transfer import AbortPredicate, transfer_files
from .lib import conf_lib
from .lib.internal.cancel import CancellationToken, graceful_interrupt
from .lib.internal.exceptions import StateError, StateMismatchError
from .lib.internal.ui import (
    ConsoleMigrationLogger,
    MigrationLogger,
    _show_error_panel,
    _show_warning_panel,
)
from .lib.models import MigrationConfig, MigrationResults, ProgressUpdate
from .lib.preflight import run_preflight_checks
from .lib.scratch import cleanup_scratch_dir, scratch_dir_for
from .lib.state import (
    MigrationState,
    StateStore,
    create_state,
    generate_state_id,
    verify_state_identity,
)
from .lib.writer import write_error_report
from .logging_config import log

# Number of error lines printed in the result summary.
DISPLAYED_ERRORS = 10


def _prepare_state(
    config: MigrationConfig, store: StateStore, resume: bool
) -> tuple[str, Optional[MigrationState], bool]:
    """Loads, verifies or creates the state of a job.

    Returns:
        The state id, the state to run with (None for a dry run without
        resume) and whether preparation succeeded.
    """
    state_config = config.state_config()
    state_id = generate_state_id(state_config)

    if resume:
        state = store.load(state_id)
        if state is None:
            _show_error_panel(
                "No Saved State",
                "No saved migration state found for this configuration. "
                "Run without --resume first.",
            )
            return state_id, None, False
        verify_state_identity(state, config)
        log.info(
            f"Resuming migration '{state_id}': {len(state.completed)} files "
            "previously completed."
        )
        return state_id, state, True

    if config.dry_run:
        return state_id, None, True

    try:
        existing = store.load(state_id)
    except StateError as e:
        _show_warning_panel(
            "Unreadable State Discarded",
            f"{e.message}\n\nThe unreadable state and its scratch files are "
            "removed; this run starts fresh.",
        )
        store.delete(state_id)
        cleanup_scratch_dir(scratch_dir_for(state_id))
        existing = None
    if existing:
        _show_warning_panel(
            "Previous State Discarded",
            f"A previous migration state was found ({len(existing.completed)} "
            "files uploaded). This run starts fresh; use --resume to continue "
            "a paused migration instead.",
        )
        store.delete(state_id)
        cleanup_scratch_dir(existing.temp_dir)
    return state_id, create_state(state_id, state_config), True


def _checkpointer(
    store: StateStore, state_id: str, state: MigrationState
) -> Callable[[ProgressUpdate], None]:
    """Builds the batch-progress callback that persists each delta."""

    def _checkpoint(update: ProgressUpdate) -> None:
        state.merge_progress(update.completed, update.stats)
        store.save(state_id, state)

    return _checkpoint


def display_results(
    results: MigrationResults, elapsed: float, console: Optional[Console] = None
) -> None:
    """Prints the result summary and the first errors."""
    console = console or Console()
    table = Table(title="Migration Results", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Status", results.status.value)
    table.add_row("Files found", str(results.files_found))
    table.add_row("Files uploaded", f"[green]{results.files_uploaded}[/green]")
    table.add_row("Files skipped", f"[yellow]{results.files_skipped}[/yellow]")
    table.add_row("Files failed", f"[red]{results.files_failed}[/red]")
    table.add_row("Links created", f"[green]{results.links_created}[/green]")
    table.add_row("Time elapsed", f"{elapsed:.1f}s")
    console.print(table)

    total_errors = len(results.errors) + results.errors_dropped
    if total_errors:
        console.print(f"[red]Errors ({total_errors}):[/red]")
        for error in results.errors[:DISPLAYED_ERRORS]:
            line = escape(f"  [{error.stage.value}] {error.file or ''} - {error.error}")
            console.print(f"[red]{line}[/red]", highlight=False)
        if total_errors > DISPLAYED_ERRORS:
            console.print(f"[red]  ... and {total_errors - DISPLAYED_ERRORS} more[/red]")


def execute_migration(  # noqa: C901
    config: MigrationConfig,
    store: StateStore,
    resume: bool = False,
    logger: Optional[MigrationLogger] = None,
    should_abort: Optional[AbortPredicate] = None,
    error_file: Optional[str] = None,
    preflight: bool = True,
    console: Optional[Console] = None,
) -> Optional[MigrationResults]:
    """Runs one migration job against already connected stores.

    Args:
        config: The migration configuration.
        store: Where checkpoints are kept.
        resume: Continue from the saved state of this configuration.
        logger: Progress sink for the engine.
        should_abort: Cancellation predicate.
        error_file: Optional path of a CSV file receiving the error list.
        preflight: Run the registered pre-flight checks first.
        console: Console for the result summary.

    Returns:
        The result summary, or None if the run could not start or failed
        fatally. A fatal failure leaves the saved state as it was after the
        last completed batch.
    """
    console = console or Console()
    logger = logger or ConsoleMigrationLogger(console)

    if preflight and not run_preflight_checks(config):
        return None

    try:
        state_id, state, ok = _prepare_state(config, store, resume)
        if not ok:
            return None
        if state is not None and not config.dry_run:
            state.mark_status(MigrationStatus.IN_PROGRESS)
            store.save(state_id, state)
    except StateMismatchError as e:
        _show_error_panel("State Belongs To Other Stores", e.message)
        return None
    except StateError as e:
        _show_error_panel("Migration State Error", e.message)
        return None

    on_progress = None
    if state is not None and not config.dry_run:
        on_progress = _checkpointer(store, state_id, state)

    start_time = time.time()
    try:
        results = transfer_files(
            config,
            state=state,
            logger=logger,
            on_progress=on_progress,
            should_abort=should_abort,
        )
    except Exception as e:
        log.error(f"Migration '{state_id}' failed: {e}", exc_info=True)
        _show_error_panel(
            "Migration Failed",
            f"{e}\n\nProgress up to the last completed batch is saved. "
            "Fix the problem and rerun with --resume.",
        )
        return None

    display_results(results, time.time() - start_time, console)

    if error_file:
        write_error_report(results.errors, error_file)

    if state is not None and not config.dry_run:
        try:
            if results.status == MigrationStatus.PAUSED:
                state.mark_status(MigrationStatus.PAUSED)
                state.merge_progress({}, results.stats())
                store.save(state_id, state)
                console.print(
                    "[yellow]Progress saved. Use --resume to continue.[/yellow]"
                )
            elif results.status == MigrationStatus.COMPLETED:
                state.mark_status(MigrationStatus.COMPLETED)
                store.delete(state_id)
                console.print("[green]Migration complete - state cleaned up.[/green]")
        except StateError as e:
            _show_error_panel("Migration State Error", e.message)

    return results


def run_migration(
    source_config: str,
    target_config: str,
    object_name: str,
    match_field: str,
    target_match_field: Optional[str] = None,
    where: Optional[str] = None,
    dry_run: bool = False,
    resume: bool = False,
    state_dir: Optional[str] = None,
    error_file: Optional[str] = None,
    no_preflight_checks: bool = False,
) -> Optional[MigrationResults]:
    """Main entry point for the migrate command.

    Connects to both stores from their configuration files and runs the
    job with Ctrl+C mapped to a graceful pause.
    """
    log.info("--- Starting File Migration ---")
    try:
        source = conf_lib.get_connection_from_config(source_config)
        target = conf_lib.get_connection_from_config(target_config)
    except Exception as e:
        _show_error_panel(
            "Store Connection Error",
            "Could not read the connection configuration.\n\n"
            f"[bold]Original Error:[/bold] {e}",
        )
        return None

    config = MigrationConfig(
        object_name=object_name,
        source_match_field=match_field,
        target_match_field=target_match_field,
        where_clause=where,
        source=source,
        target=target,
        dry_run=dry_run,
    )

    console = Console()
    token = CancellationToken()
    with graceful_interrupt(token, console):
        results = execute_migration(
            config,
            StateStore(state_dir),
            resume=resume,
            logger=ConsoleMigrationLogger(console),
            should_abort=token,
            error_file=error_file,
            preflight=not no_preflight_checks,
            console=console,
        )

    if results is not None:
        log.info(f"--- File Migration Finished ({results.status.value}) ---")
    return results
