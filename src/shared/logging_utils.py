"""Structured log helpers; every record carries ``custom_dimensions``.

Event names read ``<area>:<event>`` (``sync:remote_failed``). The area is
lifted into the dimensions so Application Insights queries can filter on it
without parsing messages.
"""
import logging
from typing import Any, Dict, Optional


_LOGGER = logging.getLogger("crosspost")


def dimensions(owner_id: Optional[str], event: str, extra: Dict[str, Any]) -> Dict[str, Any]:
    area, sep, _ = event.partition(":")
    dims: Dict[str, Any] = {"area": area} if sep else {}
    if owner_id:
        dims["ownerId"] = owner_id
    dims.update(extra)
    return dims


def log(level: int, owner_id: Optional[str], event: str, **extra: Any) -> None:
    if not _LOGGER.isEnabledFor(level):
        return
    _LOGGER.log(level, event, extra={"custom_dimensions": dimensions(owner_id, event, extra)})


def debug(owner_id: Optional[str], event: str, **extra: Any) -> None:
    log(logging.DEBUG, owner_id, event, **extra)


def info(owner_id: Optional[str], event: str, **extra: Any) -> None:
    log(logging.INFO, owner_id, event, **extra)


def warning(owner_id: Optional[str], event: str, **extra: Any) -> None:
    log(logging.WARNING, owner_id, event, **extra)


def error(owner_id: Optional[str], event: str, **extra: Any) -> None:
    log(logging.ERROR, owner_id, event, **extra)
