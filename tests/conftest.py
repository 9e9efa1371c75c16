"""Pytest configuration and shared fixtures.

No sys.path hacks - tests import from the installed boxwright package.
"""

import json
import shlex
import shutil
from pathlib import Path
from typing import List, Optional, Sequence

import pytest

from boxwright._internal.backends.memory import MemoryBackend
from boxwright._internal.settings import Settings
from boxwright._internal.store import DefinitionStore
from boxwright.kernel.definition import Definition, parse_definition
from boxwright.kernel.directives import CommitLocks, Dispatcher
from boxwright.kernel.errors import BoxError, BuildFailed
from boxwright.kernel.state import BuildState, ExecutionContext


def pytest_collection_modifyitems(config, items):
    """Skip harness tests when there is no bash to run them with."""
    if shutil.which("bash"):
        return
    skip_harness = pytest.mark.skip(reason="bash not available")
    for item in items:
        if "harness" in item.keywords:
            item.add_marker(skip_harness)


def definition_text(body: str = "", depends_on: Sequence[str] = (), shebang: str = "#!/bin/bash") -> str:
    lines = [shebang]
    if depends_on:
        lines.append(f"#~ depends_on = {json.dumps(list(depends_on))}")
    lines.append("")
    return "\n".join(lines) + body


def make_definition(name: str, depends_on: Sequence[str] = (), body: str = "", directory: str = "/defs") -> Definition:
    return parse_definition(
        name,
        f"{directory}/{name}.box",
        directory,
        definition_text(body, depends_on),
    )


class DefinitionDir:
    """A throwaway definition directory."""

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def write(self, name: str, body: str = "", depends_on: Sequence[str] = (), shebang: str = "#!/bin/bash") -> Path:
        path = self.root / f"{name}.box"
        path.write_text(definition_text(body, depends_on, shebang), encoding="utf-8")
        return path

    @property
    def store(self) -> DefinitionStore:
        return DefinitionStore([self.root])

    @property
    def settings(self) -> Settings:
        return Settings(definition_dirs=[self.root])


class InlineRunner:
    """Feeds each script line to a Dispatcher without spawning a shell.

    Lines are split like a shell would; ``exit N`` ends the script.
    """

    def __init__(self, backend, commit_locks: Optional[CommitLocks] = None):
        self.backend = backend
        self.commit_locks = commit_locks or CommitLocks()
        self.executed: List[str] = []
        self.cancelled = False

    def run(self, definition: Definition, context: ExecutionContext) -> BuildState:
        self.executed.append(definition.name)
        dispatcher = Dispatcher(self.backend, context, self.commit_locks)
        try:
            for line in definition.script.splitlines():
                words = shlex.split(line, comments=True)
                if not words:
                    continue
                if words[0] == "exit":
                    code = int(words[1]) if len(words) > 1 else 0
                    if code:
                        raise BuildFailed(definition.name, "harness", f"script exited with status {code}")
                    break
                try:
                    dispatcher.dispatch(words[0], words[1:])
                except BoxError as e:
                    raise BuildFailed(
                        definition.name,
                        f"directive:{dispatcher.state.failed_directive}",
                        e.args[0],
                        cause=e,
                    ) from e
        finally:
            dispatcher.close()
        return dispatcher.state

    def cancel(self) -> None:
        self.cancelled = True


@pytest.fixture
def memory():
    return MemoryBackend()


@pytest.fixture
def defs(tmp_path):
    return DefinitionDir(tmp_path / "box")


@pytest.fixture
def inline_runner(memory):
    return InlineRunner(memory)


@pytest.fixture
def run_build(defs, memory, inline_runner):
    """Build through the public API with the memory backend and inline runner."""
    from boxwright.api import build

    def _run(targets=None, **kwargs):
        return build(
            targets,
            settings=defs.settings,
            store=defs.store,
            backend=memory,
            runner=inline_runner,
            **kwargs,
        )
    return _run


@pytest.fixture
def context():
    return ExecutionContext(
        name="demo",
        path="/defs/demo.box",
        workdir="/defs",
        content_hash="sha256:" + "0" * 64,
        tree_hash="sha256:" + "1" * 64,
    )
