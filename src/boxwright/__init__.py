"""boxwright: build container images from shell-script definitions."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("boxwright")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
from boxwright.api import build, up, down, resolve_graph
from boxwright.contracts import BuildReport, NodeOutcome, NodeStatus, UpOutcome, UpReport, UpStatus
from boxwright.codes import ErrorCode

__all__ = [
    "__version__",
    "build",
    "up",
    "down",
    "resolve_graph",
    "BuildReport",
    "NodeOutcome",
    "NodeStatus",
    "UpOutcome",
    "UpReport",
    "UpStatus",
    "ErrorCode",
]
