"""This module provides a registry and functions for pre-flight checks.

These checks are run before a migration starts to catch configuration
errors early (unreachable stores, misspelled objects or match fields).
"""

from typing import Any, Callable

from ..logging_config import log
from .connection import StoreConnection
from .internal.ui import _show_error_panel, _show_warning_panel
from .models import MigrationConfig

# A registry to hold all pre-flight check functions
PREFLIGHT_CHECKS: list[Callable[..., bool]] = []


def register_check(func: Callable[..., bool]) -> Callable[..., bool]:
    """A decorator to register a new pre-flight check function."""
    PREFLIGHT_CHECKS.append(func)
    return func


@register_check
def connection_check(config: MigrationConfig, **kwargs: Any) -> bool:
    """Pre-flight check to verify that both stores answer."""
    log.info("Running pre-flight check: Verifying store connections...")
    for label, conn in (("source", config.source), ("target", config.target)):
        try:
            conn.describe_objects()
        except Exception as e:
            _show_error_panel(
                "Store Connection Error",
                f"Could not reach the {label} store at {conn.instance_url}. "
                f"Please check the instance URL and access token.\nError: {e}",
            )
            return False
    log.info("Both stores are reachable.")
    return True


def _describe_fields(conn: StoreConnection, object_name: str) -> dict[str, Any]:
    return {f["name"]: f for f in conn.describe(object_name)}


@register_check
def match_field_check(config: MigrationConfig, **kwargs: Any) -> bool:
    """Pre-flight check to verify the object and match fields on both stores.

    A target match field that is neither an external id nor unique only
    produces a warning: duplicates are resolved at runtime.
    """
    log.info("Running pre-flight check: Verifying match fields...")
    checks = (
        ("source", config.source, config.source_match_field),
        ("target", config.target, str(config.target_match_field)),
    )
    for label, conn, field_name in checks:
        try:
            fields = _describe_fields(conn, config.object_name)
        except Exception as e:
            _show_error_panel(
                "Object Not Found",
                f"Could not describe '{config.object_name}' on the {label} "
                f"store.\nError: {e}",
            )
            return False
        if field_name not in fields:
            _show_error_panel(
                "Match Field Not Found",
                f"Field '{field_name}' does not exist on '{config.object_name}' "
                f"in the {label} store.",
            )
            return False

        if label == "target" and field_name != "Id":
            info = fields[field_name]
            if not (info.get("externalId") or info.get("unique")):
                _show_warning_panel(
                    "Match Field Not Unique",
                    f"Target field '{field_name}' is neither an external id nor "
                    "unique. Records sharing a value are matched to the one "
                    "with the lowest id.",
                )
    log.info("Match fields verified.")
    return True


def run_preflight_checks(config: MigrationConfig, **kwargs: Any) -> bool:
    """Iterates through and runs all registered pre-flight checks.

    Returns:
        bool: True if all checks pass, False otherwise.
    """
    for check_func in PREFLIGHT_CHECKS:
        if not check_func(config=config, **kwargs):
            return False
    return True
