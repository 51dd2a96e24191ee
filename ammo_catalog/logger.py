# ammo_catalog/logger.py
"""
Run log for catalog passes.

Events are buffered in memory while a pass runs and appended to a JSONL file
at the end, partitioned by mode, date and hour:

    <LOG_ROOT>/<mode>/date=YYYY-MM-DD/hour=HH/ammo_catalog.jsonl

Every event carries the run id, so several runs in the same hour can share
one file. Events about a single listing carry its `url` at the top level,
which makes "what happened to this URL" a one-line query.
"""
from __future__ import annotations

import json
import uuid
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config

RUN_MODES = ("dry-run", "prod")

CURRENT_RUN_MODE = "prod"
RUN_ID = uuid.uuid4().hex[:12]

_EVENTS: List[Dict[str, Any]] = []


def set_run_mode(mode: str) -> str:
    """
    Start a new run in `mode` and return its run id.

        dry-run → changes are computed and logged, catalog is not written
        prod    → catalog is written when something changed

    Unknown modes fall back to prod.
    """
    global CURRENT_RUN_MODE, RUN_ID
    CURRENT_RUN_MODE = mode if mode in RUN_MODES else "prod"
    RUN_ID = uuid.uuid4().hex[:12]
    return RUN_ID


def log(message: str, context: str = "general", extra: Optional[Dict[str, Any]] = None) -> None:
    extra = dict(extra or {})
    _EVENTS.append(
        {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "run_id": RUN_ID,
            "mode": CURRENT_RUN_MODE,
            "context": context,
            "url": extra.pop("url", None),
            "message": message,
            "extra": extra,
        }
    )


def clear_logs() -> None:
    _EVENTS.clear()


def get_logs(
    context: Optional[str] = None,
    text: Optional[str] = None,
    url: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Filter buffered events; `text` is a case-insensitive substring match."""
    needle = text.lower() if text else None
    return [
        ev
        for ev in _EVENTS
        if (context is None or ev["context"] == context)
        and (url is None or ev["url"] == url)
        and (needle is None or needle in ev["message"].lower())
    ]


def count_by_context() -> Dict[str, int]:
    return dict(Counter(ev["context"] for ev in _EVENTS))


def export_logs_as_jsonl(log_root: Path | str | None = None) -> str:
    """Append the buffer to this hour's partition file and return its path."""
    now = datetime.now(timezone.utc)
    root = Path(log_root) if log_root is not None else config.LOG_ROOT
    partition = root / CURRENT_RUN_MODE / f"date={now:%Y-%m-%d}" / f"hour={now:%H}"
    partition.mkdir(parents=True, exist_ok=True)

    out_file = partition / "ammo_catalog.jsonl"
    with out_file.open("a", encoding="utf-8") as f:
        for ev in _EVENTS:
            f.write(json.dumps(ev, ensure_ascii=False) + "\n")
    return str(out_file)


def export_logs_as_text(url: Optional[str] = None) -> str:
    """Plain-text dump of the buffer, optionally for one listing only."""
    lines = []
    for ev in get_logs(url=url):
        where = f" {ev['url']}" if ev["url"] and url is None else ""
        tail = f" {ev['extra']}" if ev["extra"] else ""
        lines.append(f"[{ev['timestamp']}] [{ev['context']}]{where} {ev['message']}{tail}")
    return "\n".join(lines)
