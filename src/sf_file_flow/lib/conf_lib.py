"""Config File Handler.

This module handles reading the connection configuration file and
building a :class:`StoreConnection` from it.
"""

import configparser
from typing import Any

from ..logging_config import log
from .connection import DEFAULT_API_VERSION, DEFAULT_TIMEOUT, StoreConnection
from .internal.exceptions import ConfigurationError


def get_connection_from_dict(config: dict[str, Any]) -> StoreConnection:
    """Builds a store connection from a dictionary of connection details.

    Args:
        config: A dictionary with ``instance_url`` and ``access_token`` and
            optionally ``api_version`` and ``timeout``.

    Returns:
        StoreConnection: An initialized connection handle.
    """
    try:
        instance_url = config["instance_url"]
        access_token = config["access_token"]
        api_version = str(config.get("api_version") or DEFAULT_API_VERSION)
        timeout = float(config.get("timeout") or DEFAULT_TIMEOUT)
    except KeyError as e:
        raise ConfigurationError(f"Missing required connection key: {e}") from e
    except ValueError as e:
        raise ConfigurationError(f"Malformed connection value: {e}") from e

    log.info(f"Connecting to store at {instance_url}...")
    return StoreConnection(
        instance_url=instance_url,
        access_token=access_token,
        api_version=api_version,
        timeout=timeout,
    )


def get_connection_from_config(config_file: str) -> StoreConnection:
    """Get connection from config.

    Reads a connection configuration file with a ``[Connection]`` section
    and returns an initialized store connection.

    Args:
        config_file (str): The path to the connection.conf file.

    Returns:
        StoreConnection: An initialized connection handle.
    """
    config = configparser.ConfigParser()
    if not config.read(config_file):
        log.error(f"Configuration file not found or is empty: {config_file}")
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    try:
        conn_details = dict(config["Connection"])
        return get_connection_from_dict(conn_details)
    except (KeyError, ConfigurationError) as e:
        log.error(
            f"Configuration file '{config_file}' is missing a required key "
            f"or has a malformed value: {e}"
        )
        raise
