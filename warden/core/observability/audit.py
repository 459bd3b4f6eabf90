from __future__ import annotations

import json
import logging
import logging.handlers
import time
from pathlib import Path
from typing import Any, Dict, Optional

log = logging.getLogger("warden.audit")

# 10MB max per file, 5 backups
_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5

_handler_cache: Dict[str, logging.Handler] = {}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _get_rotating_handler(audit_path: Path) -> logging.Handler:
    key = str(audit_path.resolve())
    if key not in _handler_cache:
        audit_path.parent.mkdir(parents=True, exist_ok=True)
        h = logging.handlers.RotatingFileHandler(
            str(audit_path),
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        h.setFormatter(logging.Formatter("%(message)s"))
        _handler_cache[key] = h
    return _handler_cache[key]


def close_audit_handlers() -> None:
    for h in _handler_cache.values():
        h.close()
    _handler_cache.clear()


class AuditTrail:
    """
    Governance audit events as JSON lines.

    Every event goes to the "warden.audit" logger; with a path configured the
    line is also appended to a rotating audit file.
    """

    def __init__(self, audit_path: Optional[Path] = None):
        self.audit_path = audit_path

    def emit(
        self,
        event_type: str,
        *,
        actor: Optional[str],
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "ts_ms": _now_ms(),
            "type": event_type,
            "actor": actor,
        }
        if extra:
            record["extra"] = extra

        line = json.dumps(record, separators=(",", ":"), ensure_ascii=False, sort_keys=True, default=str)
        log.info("%s", line)

        if self.audit_path is not None:
            handler = _get_rotating_handler(self.audit_path)
            handler.emit(
                logging.LogRecord(
                    name="warden.audit",
                    level=logging.INFO,
                    pathname="",
                    lineno=0,
                    msg=line,
                    args=(),
                    exc_info=None,
                )
            )
        return record
