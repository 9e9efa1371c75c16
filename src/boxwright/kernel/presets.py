"""Named, fixed bundles of CFG operations."""

from typing import Dict, List, Tuple

from .state import ConfigOp

PRESETS: Dict[str, Tuple[ConfigOp, ...]] = {
    "cli": (
        ConfigOp(key="args", values=("--tty", "--interactive")),
    ),
    "gpu": (
        ConfigOp(key="device", values=("/dev/dri",)),
    ),
    "x11": (
        ConfigOp(key="mount", values=("src=/tmp/.X11-unix,dst=/tmp/.X11-unix",)),
        ConfigOp(key="env", values=("DISPLAY",)),
    ),
    "host-network": (
        ConfigOp(key="network", values=("host",)),
    ),
    "keep-id": (
        ConfigOp(key="args", values=("--userns", "keep-id")),
    ),
}


def expand_preset(name: str) -> List[ConfigOp]:
    """Expand a preset into its ops, in declaration order.

    Raises:
        KeyError: unknown preset name
    """
    return list(PRESETS[name])
