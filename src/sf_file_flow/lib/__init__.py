"initialize Library."

from . import (
    conf_lib,
    connection,
    internal,
    links,
    models,
    preflight,
    query,
    resolver,
    scratch,
    state,
    writer,
)

__all__ = [
    "conf_lib",
    "connection",
    "internal",
    "links",
    "models",
    "preflight",
    "query",
    "resolver",
    "scratch",
    "state",
    "writer",
]
