from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Dict

from reco.core.config import settings

BACKEND_ROOT = Path(__file__).resolve().parents[2]


def debug_log_path() -> Path:
    return BACKEND_ROOT / settings.LOG_DIR / settings.DEBUG_LOG_FILE


def debug_log(stage: str, payload: Dict[str, Any]) -> None:
    """Append one NDJSON pipeline trace line when DEBUG_LOG_ENABLED. Never raises."""
    if not getattr(settings, "DEBUG_LOG_ENABLED", False):
        return
    record = {"ts": round(time.time(), 3), "stage": stage, **payload}
    try:
        path = debug_log_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
    except Exception:
        # tracing must not break the request
        pass
