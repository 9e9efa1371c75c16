"""Pydantic models for definitions and their front-matter metadata."""

import shlex
import tomllib
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field, ValidationError, computed_field, field_validator

from .errors import InvalidDefinition
from .hash_utils import hash_content

METADATA_PREFIX = "#~"


class InterpreterKind(str, Enum):
    """Shell dialect a definition is written in."""
    POSIX = "posix"
    FISH = "fish"


class Metadata(BaseModel):
    """TOML front-matter collected from ``#~`` lines."""
    depends_on: tuple[str, ...] = Field(
        default_factory=tuple,
        description="Names of definitions this one builds from (ordered, no duplicates)"
    )

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator('depends_on', mode='before')
    @classmethod
    def validate_depends_on(cls, v) -> tuple[str, ...]:
        """Reject duplicates and empty names; keep declaration order."""
        if isinstance(v, str):
            v = [v]
        seen = set()
        duplicates = set()
        for name in v:
            if not isinstance(name, str) or not name.strip():
                raise ValueError(f"depends_on entries must be non-empty strings, got {name!r}")
            if name in seen:
                duplicates.add(name)
            seen.add(name)
        if duplicates:
            raise ValueError(f"Duplicate depends_on entries not allowed: {sorted(duplicates)}")
        return tuple(v)


class Definition(BaseModel):
    """A loaded definition. Immutable; re-read from disk on every invocation."""
    name: str
    path: str
    directory: str
    shebang: str
    interpreter: str
    kind: InterpreterKind
    script: str
    metadata: Metadata = Field(default_factory=Metadata)

    model_config = ConfigDict(frozen=True)

    @property
    def depends_on(self) -> tuple[str, ...]:
        return self.metadata.depends_on

    @computed_field
    @property
    def content_hash(self) -> str:
        """Digest of the raw script bytes."""
        return hash_content(self.script)

    def has_directive(self, keyword: str) -> bool:
        """Cheap textual check used for missing FROM/COMMIT warnings."""
        return any(keyword in line.split("#", 1)[0] for line in self.script.splitlines())


def _interpreter_kind(interpreter: str) -> InterpreterKind:
    try:
        argv = shlex.split(interpreter)
    except ValueError:
        argv = interpreter.split()
    program = argv[0].rsplit("/", 1)[-1] if argv else ""
    if program == "env":
        # /usr/bin/env [-S] fish
        rest = [a for a in argv[1:] if not a.startswith("-")]
        program = rest[0].rsplit("/", 1)[-1] if rest else ""
    if program.startswith("fish"):
        return InterpreterKind.FISH
    return InterpreterKind.POSIX


def _leading_metadata(lines: List[str]) -> str:
    """Collect ``#~`` lines from the comment block ahead of executable content."""
    collected = []
    for line in lines:
        stripped = line.strip()
        if stripped.startswith(METADATA_PREFIX):
            collected.append(stripped[len(METADATA_PREFIX):].strip())
        elif stripped == "" or stripped.startswith("#"):
            continue
        else:
            break
    return "\n".join(collected)


def parse_definition(name: str, path: str, directory: str, text: str) -> Definition:
    """Parse definition text into a Definition.

    Raises:
        InvalidDefinition: missing shebang, empty interpreter, or bad metadata
    """
    lines = text.splitlines()
    if not lines or not lines[0].startswith("#!"):
        raise InvalidDefinition(
            f"Definition '{name}' does not start with a shebang",
            path=path,
            hint="Add '#!/bin/bash' (or another shell) as the first line.",
        )

    shebang = lines[0]
    interpreter = shebang[2:].strip()
    if not interpreter:
        raise InvalidDefinition(
            f"Shebang {shebang!r} of definition '{name}' names no interpreter",
            path=path,
            hint="Did you make a typo or forget the interpreter path?",
        )

    raw_meta = _leading_metadata(lines[1:])
    try:
        metadata = Metadata(**tomllib.loads(raw_meta)) if raw_meta else Metadata()
    except tomllib.TOMLDecodeError as e:
        raise InvalidDefinition(
            f"Failed to parse TOML front-matter of '{name}': {e}",
            path=path,
            hint="Metadata lines look like: #~ depends_on = [\"base\"]",
        ) from e
    except ValidationError as e:
        raise InvalidDefinition(
            f"Invalid front-matter in '{name}': {e.errors()[0]['msg']}",
            path=path,
        ) from e

    return Definition(
        name=name,
        path=path,
        directory=directory,
        shebang=shebang,
        interpreter=interpreter,
        kind=_interpreter_kind(interpreter),
        script=text,
        metadata=metadata,
    )
