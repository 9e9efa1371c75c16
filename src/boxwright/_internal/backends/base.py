"""Shared utilities for backends that shell out to an OCI tool."""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any, Sequence

from boxwright.kernel.errors import BackendError

logger = logging.getLogger(__name__)


def run_tool(
    cmd: Sequence[str],
    *,
    backend: str,
    operation: str,
    capture: bool = True,
    allow_failure: bool = False,
) -> subprocess.CompletedProcess:
    """Run an external OCI tool and turn failures into BackendError.

    With ``capture=False`` the tool writes straight to our stdout/stderr,
    which is what RUN wants.
    """
    logger.debug("%s %s: %s", backend, operation, " ".join(cmd))
    try:
        result = subprocess.run(
            list(cmd),
            capture_output=capture,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        raise BackendError(
            f"`{cmd[0]}` was not found in PATH.",
            hint=f"Install {cmd[0]} or point the backend at another executable.",
            context={"backend": backend, "operation": operation},
        ) from e

    if result.returncode != 0 and not allow_failure:
        raise BackendError(
            f"{cmd[0]} {operation} failed.",
            hint=f"Check {cmd[0]} output for details.",
            context={
                "backend": backend,
                "operation": operation,
                "returncode": str(result.returncode),
                "stderr": result.stderr[:2000] if result.stderr else "",
                "command": " ".join(cmd),
            },
        )
    return result


def parse_json_output(result: subprocess.CompletedProcess, *, backend: str, operation: str) -> Any:
    try:
        return json.loads(result.stdout or "null")
    except json.JSONDecodeError as e:
        raise BackendError(
            f"Could not parse {operation} output as JSON: {e}",
            context={"backend": backend, "operation": operation},
        ) from e


def last_line(output: str) -> str:
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    return lines[-1] if lines else ""
