"""Environment-driven settings."""

import os
from pathlib import Path
from typing import List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFINITION_SUFFIX = ".box"


class Settings(BaseModel):
    """Knobs read from the environment; CLI flags override them."""
    definition_dirs: List[Path] = Field(default_factory=list)
    jobs: int = 1
    log_level: Optional[str] = None
    builder: str = "buildah"
    runtime: str = "podman"

    model_config = ConfigDict(extra="forbid")

    @field_validator('jobs')
    @classmethod
    def validate_jobs(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"jobs must be at least 1, got {v}")
        return v

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            definition_dirs=definition_directories(env),
            jobs=env.get("BOX_JOBS") or 1,
            log_level=env.get("BOX_LOG") or None,
            builder=env.get("BOX_BUILDER") or "buildah",
            runtime=env.get("BOX_RUNTIME") or "podman",
        )


def definition_directories(env: Mapping[str, str]) -> List[Path]:
    """Candidate definition directories, in search order.

    - ``$BOX_DEFINITION_DIR``
    - ``$XDG_CONFIG_HOME/box``
    - ``$HOME/.config/box``
    """
    candidates: List[Path] = []
    if env.get("BOX_DEFINITION_DIR"):
        candidates.append(Path(env["BOX_DEFINITION_DIR"]))
    if env.get("XDG_CONFIG_HOME"):
        candidates.append(Path(env["XDG_CONFIG_HOME"]) / "box")
    if env.get("HOME"):
        candidates.append(Path(env["HOME"]) / ".config" / "box")

    unique: List[Path] = []
    for path in candidates:
        if path not in unique:
            unique.append(path)
    return unique
