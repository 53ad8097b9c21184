"""Central logging configuration helpers for PeerWatch."""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterable, Mapping

from loguru import logger

DEFAULT_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[local_id]} | "
    "{name}:{function}:{line} - {message}"
)

UNSET_LOCAL_ID = "-"


def _scope_filter(scopes: tuple[str, ...]) -> Callable[[object], bool]:
    """Build a loguru filter passing DEBUG records from the given module scopes.

    Scopes may be given with or without the ``peerwatch.`` package prefix.
    """

    def _debug_filter(record: object) -> bool:
        if not isinstance(record, Mapping):
            return False
        if getattr(record.get("level"), "name", None) != "DEBUG":
            return False
        record_name = record.get("name", "")
        for scope in scopes:
            qualified = scope if scope.startswith("peerwatch.") else f"peerwatch.{scope}"
            if record_name.startswith(scope) or record_name.startswith(qualified):
                return True
        return False

    return _debug_filter


def configure_logging(
    level: str,
    *,
    debug_scopes: Iterable[str] = (),
    colorize: bool = False,
    local_id: str | None = None,
) -> tuple[int, ...]:
    """Configure loguru sinks for a membership process.

    Every record carries the local membership id so that logs from several
    nodes sharing a terminal stay attributable. ``debug_scopes`` lets a
    non-DEBUG run still emit DEBUG records for selected modules, e.g.
    ``("membership.watcher",)``.
    """
    logger.remove()
    logger.configure(extra={"local_id": local_id or UNSET_LOCAL_ID})

    handler_ids: list[int] = [
        logger.add(
            sys.stderr,
            level=level,
            format=DEFAULT_LOG_FORMAT,
            colorize=colorize,
        )
    ]

    scopes = tuple(scope.strip() for scope in debug_scopes if scope.strip())
    if scopes and level.upper() != "DEBUG":
        handler_ids.append(
            logger.add(
                sys.stderr,
                level="DEBUG",
                format=DEFAULT_LOG_FORMAT,
                colorize=colorize,
                filter=_scope_filter(scopes),
            )
        )

    return tuple(handler_ids)
