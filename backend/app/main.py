"""FastAPI application entrypoints for the PySim playground.

This module exposes the HTTP endpoint behind the editor's "run" action. It
keeps handlers intentionally small: each `/run` request constructs a fresh
`Interpreter` to avoid cross-request state sharing and calls the
interpreter's public API. Server-side caps are enforced to prevent clients
from overriding resource/safety limits.

Server-wide switches are read from the environment:
  - PYSIM_USE_SUBPROCESS: "1" runs every program in a worker subprocess.
  - PYSIM_TIMEOUT_S: wall-clock ceiling for subprocess runs (seconds).
"""

import logging
import os
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI
from pydantic import BaseModel

from ..pysim.interpreter import Interpreter

logger = logging.getLogger(__name__)

app = FastAPI(title="PySim API", version="0.1")


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def _cap_settings(settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Enforce server-side safe caps for runtime tunables.

    Clients may include a `settings` object with per-run tunables. The server
    must not trust these entirely; `_cap_settings` establishes a conservative
    ceiling using a fresh `Interpreter()`'s defaults and then applies the
    client's requested values up to those ceilings.

    Returns a dict suitable for passing directly into `Interpreter.execute`.
    """
    defaults = Interpreter()
    safe: Dict[str, Any] = {
        "max_call_depth": defaults.max_call_depth,
        "max_output_chars": defaults.max_output_chars,
        "timeout_s": float(os.environ.get("PYSIM_TIMEOUT_S", defaults.timeout_s)),
        "use_subprocess": _env_flag("PYSIM_USE_SUBPROCESS"),
    }
    if not settings:
        return safe
    caps = dict(safe)
    caps["max_call_depth"] = min(int(settings.get("max_call_depth", safe["max_call_depth"])), safe["max_call_depth"])
    caps["max_output_chars"] = min(int(settings.get("max_output_chars", safe["max_output_chars"])), safe["max_output_chars"])
    caps["timeout_s"] = min(float(settings.get("timeout_s", safe["timeout_s"])), safe["timeout_s"])
    # clients may opt into isolation but never out of a server-wide policy
    caps["use_subprocess"] = safe["use_subprocess"] or bool(settings.get("use_subprocess", False))
    return caps


class RunRequest(BaseModel):
    """Pydantic model for the `/run` request body.

    Fields:
        code: program source text.
        settings: optional runtime tunables; will be capped server-side.
    """
    code: str
    settings: Optional[Dict[str, Any]] = None


@app.post("/run")
async def run_code(req: RunRequest):
    """Handle a code execution request.

    A fresh `Interpreter` is built per request, the client's settings are
    capped and the program is executed. Any exception is turned into a
    SERVER_ERROR response so callers always receive the same JSON shape.
    """
    start = time.time()
    try:
        capped = _cap_settings(req.settings or {})
        it = Interpreter()
        result = it.execute(req.code, settings=capped)
    except Exception as e:
        logger.exception("Unhandled error while running code")
        return {
            "output": "",
            "warnings": [],
            "variables": {},
            "duration_ms": int((time.time() - start) * 1000),
            "errors": {"code": "SERVER_ERROR", "message": str(e)},
        }
    result["duration_ms"] = int((time.time() - start) * 1000)
    return result
