"""Harness tests: prelude rendering and real shell executions."""

import shlex
import shutil
import sys
import threading
import time

import pytest

from boxwright._internal.harness import (
    HarnessRunner,
    config_command,
    harness_command,
    harness_environment,
    render_prelude,
)
from boxwright._internal.protocol import ENV_NAME, ENV_SOCKET, ENV_TOKEN, ENV_TREE
from boxwright.kernel.cache import LABEL_CONFIG, LABEL_NAME
from boxwright.kernel.definition import InterpreterKind
from boxwright.kernel.directives import DIRECTIVES
from boxwright.kernel.errors import BuildFailed
from boxwright.kernel.state import ExecutionContext

from conftest import definition_text


class TestPrelude:

    def test_posix_prelude_defines_every_directive(self):
        prelude = render_prelude(InterpreterKind.POSIX, command="bx config")
        assert prelude.startswith("set -eu\n")
        for keyword in DIRECTIVES:
            assert f'{keyword}() {{ bx config {keyword} "$@" || exit $?; }}' in prelude

    def test_fish_prelude_defines_every_directive(self):
        prelude = render_prelude(InterpreterKind.FISH, command="bx config")
        for keyword in DIRECTIVES:
            assert f"function {keyword}\n    bx config {keyword} $argv; or exit $status\nend" in prelude

    def test_default_command_uses_this_interpreter(self):
        assert config_command() == f"{shlex.quote(sys.executable)} -m boxwright config"
        assert config_command() in render_prelude(InterpreterKind.POSIX)


class TestCommand:

    def test_posix_runs_prelude_then_script(self, defs):
        path = defs.write("demo", "FROM fedora\n")
        definition = defs.store.load(path)
        argv = harness_command(definition, "PRELUDE\n")
        assert argv[:2] == ["/bin/bash", "-c"]
        assert argv[2] == "PRELUDE\n" + definition.script
        assert argv[3] == "demo"

    def test_env_interpreter_is_split(self, defs):
        path = defs.write("demo", "FROM fedora\n", shebang="#!/usr/bin/env bash")
        argv = harness_command(defs.store.load(path), "P\n")
        assert argv[:3] == ["/usr/bin/env", "bash", "-c"]

    def test_fish_uses_init_command_and_path(self, defs):
        path = defs.write("demo", "FROM fedora\n", shebang="#!/usr/bin/fish")
        argv = harness_command(defs.store.load(path), "P\n")
        assert argv == ["/usr/bin/fish", "--init-command", "P\n", str(path)]


def test_environment_contract(context):
    env = harness_environment(context, "/tmp/s.sock", "tok")
    assert env[ENV_SOCKET] == "/tmp/s.sock"
    assert env[ENV_TOKEN] == "tok"
    assert env[ENV_NAME] == "demo"
    assert env[ENV_TREE] == context.tree_hash
    assert env["BX_BUILD_DIR"] == "/defs"


def _context_for(definition):
    return ExecutionContext(
        name=definition.name,
        path=definition.path,
        workdir=definition.directory,
        content_hash=definition.content_hash,
        tree_hash="sha256:test-tree",
    )


def _run(defs, memory, name, body, shebang=None):
    path = defs.write(name, body, shebang=shebang or f"#!{shutil.which('bash')}")
    definition = defs.store.load(path)
    runner = HarnessRunner(memory)
    return runner.run(definition, _context_for(definition))


@pytest.mark.harness
class TestExecution:

    def test_successful_build(self, defs, memory):
        state = _run(defs, memory, "demo", "\n".join([
            'test "$BX_BUILD_NAME" = demo || exit 9',
            "FROM fedora",
            "RUN echo hello",
            'CFG env "GREETING=hello world"',
            "COMMIT demo",
        ]) + "\n")

        assert state.images == [memory.tags["demo"]]
        labels = memory.image_labels("demo")
        assert labels[LABEL_NAME] == "demo"
        assert '"GREETING=hello world"' in labels[LABEL_CONFIG]
        assert memory.working == {}

    def test_runs_in_definition_directory(self, defs, memory):
        (defs.root / "marker").write_text("x", encoding="utf-8")
        state = _run(defs, memory, "demo", "test -f marker || exit 5\nFROM fedora\nCOMMIT demo\n")
        assert len(state.images) == 1

    def test_failed_directive_aborts_script(self, defs, memory):
        with pytest.raises(BuildFailed) as exc:
            _run(defs, memory, "demo", "FROM fedora\nRUN false\nRUN echo unreachable\nCOMMIT demo\n")

        assert exc.value.stage == "directive:RUN"
        assert memory.calls_of("commit") == []
        assert memory.working == {}
        assert not any("unreachable" in call for call in memory.calls)

    def test_directive_before_from(self, defs, memory):
        with pytest.raises(BuildFailed) as exc:
            _run(defs, memory, "demo", "RUN true\n")
        assert exc.value.stage == "directive:RUN"
        assert "requires an active working container" in exc.value.reason

    def test_failure_is_fatal_even_when_the_script_ignores_it(self, defs, memory):
        with pytest.raises(BuildFailed) as exc:
            _run(defs, memory, "demo", "FROM fedora\nRUN false || true\nCOMMIT demo\n")
        assert exc.value.stage == "directive:RUN"
        assert "demo" not in memory.tags

    def test_nonzero_exit(self, defs, memory):
        with pytest.raises(BuildFailed) as exc:
            _run(defs, memory, "demo", "FROM fedora\nexit 4\n")
        assert exc.value.stage == "harness"
        assert "status 4" in exc.value.reason
        assert memory.working == {}

    def test_spawn_failure(self, defs, memory):
        with pytest.raises(BuildFailed) as exc:
            _run(defs, memory, "demo", "FROM fedora\n", shebang="#!/nonexistent/shell")
        assert exc.value.stage == "spawn"
        assert memory.calls == []

    def test_cancel_terminates_process_group(self, defs, memory):
        path = defs.write("slow", "FROM fedora\nsleep 30\nCOMMIT slow\n", shebang=f"#!{shutil.which('bash')}")
        definition = defs.store.load(path)
        runner = HarnessRunner(memory, grace_period=1.0)
        errors = []

        def target():
            try:
                runner.run(definition, _context_for(definition))
            except BuildFailed as e:
                errors.append(e)

        thread = threading.Thread(target=target)
        thread.start()
        deadline = time.monotonic() + 10
        while not memory.working and time.monotonic() < deadline:
            time.sleep(0.05)
        started = time.monotonic()
        runner.cancel()
        thread.join(10)

        assert not thread.is_alive()
        assert time.monotonic() - started < 10
        assert errors and errors[0].stage == "harness"
        assert "cancelled" in errors[0].reason
        assert memory.working == {}
        assert "slow" not in memory.tags
