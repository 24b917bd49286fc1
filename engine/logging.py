"""
Lab Pool — Logging

Every module logs through the standard library under the `labpool`
namespace (labpool.claims, labpool.lifecycle, labpool.store, ...).
configure_logging() installs one handler on that namespace:

  - json: one object per line, for the API server and log shipping
  - text: plain lines, for the CLI

Event-style records (one per transition, one per lost claim race) carry
their fields at the top level of the JSON object:

    log_event(logger, logging.INFO, "transition", item_id="itm_1", to_status="CLAIMED")
    → {"ts": "...", "level": "INFO", "logger": "labpool.transitions",
       "msg": "transition", "service": "labpool", "item_id": "itm_1", ...}
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

ROOT_LOGGER = "labpool"

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JsonLineFormatter(logging.Formatter):

    def __init__(self, service: str = ROOT_LOGGER):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc)
                          .isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "service": self.service,
        }
        entry.update(getattr(record, "fields", None) or {})
        if record.exc_info and record.exc_info[1] is not None:
            entry["error"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Plain lines; event fields are appended as key=value pairs."""

    def __init__(self):
        super().__init__(_TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "fields", None)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def configure_logging(
    level: str = "INFO",
    fmt: str = "json",
    stream: TextIO | None = None,
    service: str = ROOT_LOGGER,
) -> logging.Logger:
    """
    (Re)install the labpool handler. Calling it again replaces the
    previous handler rather than adding a second one.
    """
    if fmt not in ("json", "text"):
        raise ValueError(f"log format must be 'json' or 'text', got {fmt!r}")

    root = logging.getLogger(ROOT_LOGGER)
    for h in [h for h in root.handlers if getattr(h, "_labpool", False)]:
        root.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonLineFormatter(service) if fmt == "json" else TextFormatter())
    handler._labpool = True
    root.addHandler(handler)
    numeric = logging.getLevelName(level.upper())
    root.setLevel(numeric if isinstance(numeric, int) else logging.INFO)
    root.propagate = False
    return root


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """Log `event` as the message with `fields` attached for the JSON formatter."""
    if logger.isEnabledFor(level):
        logger.log(level, event, extra={"fields": fields})
