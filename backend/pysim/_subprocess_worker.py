"""Subprocess worker that runs one PySim program.

Executed as `python -m backend.pysim._subprocess_worker`. It reads a single
JSON object from stdin with shape {"code": "...", "settings": {...}}, runs the
code with a fresh `Interpreter` and writes the structured result
({"output", "warnings", "variables", "errors"}) to stdout as JSON.

The calling process enforces wall-clock timeouts and resource caps.
"""

import json
import sys
from typing import Any, Dict

from backend.pysim.interpreter import Interpreter


def run_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Run the program described by a decoded request payload."""
    settings = dict(payload.get("settings") or {})
    # never recurse into another subprocess
    settings.pop("use_subprocess", None)
    return Interpreter().execute(str(payload.get("code", "")), settings)


def main() -> None:
    raw = sys.stdin.read()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        print(json.dumps({
            "output": "",
            "warnings": [],
            "variables": {},
            "errors": {"code": "BAD_PAYLOAD", "message": str(e)},
        }))
        sys.exit(1)

    print(json.dumps(run_payload(payload)))


if __name__ == '__main__':
    main()
