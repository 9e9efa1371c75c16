"""Tests for the bx CLI."""

import json

import pytest

from boxwright import api, cli
from boxwright._internal.backends.memory import MemoryBackend
from boxwright._internal.protocol import ENV_SOCKET, ENV_TOKEN

from conftest import InlineRunner


@pytest.fixture
def env(monkeypatch, defs):
    monkeypatch.setenv("BOX_DEFINITION_DIR", str(defs.root))
    monkeypatch.delenv("BOX_JOBS", raising=False)
    monkeypatch.delenv("BOX_LOG", raising=False)
    monkeypatch.delenv(ENV_SOCKET, raising=False)
    monkeypatch.delenv(ENV_TOKEN, raising=False)
    return defs


@pytest.fixture
def backend(monkeypatch):
    """Route CLI builds through the memory backend and inline runner."""
    memory = MemoryBackend()
    monkeypatch.setattr(api, "make_build_backend", lambda settings: memory)
    monkeypatch.setattr(api, "make_run_backend", lambda settings: memory)
    monkeypatch.setattr(api, "HarnessRunner", InlineRunner)
    return memory


def _main(*argv):
    """Run the CLI and return its exit code (0 when it returns normally)."""
    try:
        cli.main(list(argv))
    except SystemExit as e:
        return e.code
    return 0


def test_no_command_prints_help(env, capsys):
    assert _main() == 1
    assert "usage: bx" in capsys.readouterr().out


def test_build_prints_status_lines(env, backend, capsys):
    env.write("base", "FROM fedora\nCOMMIT base\n")
    env.write("app", "FROM base\nCOMMIT app\n", depends_on=["base"])

    assert _main("build", "app") == 0
    assert capsys.readouterr().out.splitlines() == ["[BUILT] base", "[BUILT] app"]

    assert _main("build", "app") == 0
    assert capsys.readouterr().out.splitlines() == [
        "[CACHED] base (unchanged)",
        "[CACHED] app (unchanged)",
    ]


def test_build_json_report(env, backend, capsys):
    env.write("base", "FROM fedora\nCOMMIT base\n")
    assert _main("build", "--all", "--json") == 0
    report = json.loads(capsys.readouterr().out)
    assert report["ok"] is True
    assert report["order"] == ["base"]
    assert report["outcomes"][0]["status"] == "built"


def test_build_failure_exits_nonzero(env, backend, capsys):
    env.write("base", "FROM fedora\nRUN false\nCOMMIT base\n")
    env.write("app", "FROM base\nCOMMIT app\n", depends_on=["base"])

    assert _main("build", "app") == 1
    out = capsys.readouterr().out.splitlines()
    assert out[0].startswith("[FAILED] base at directive:RUN")
    assert out[1] == "[BLOCKED] app (a dependency failed)"


def test_build_dry_run_uses_memory_backend(env, monkeypatch, capsys):
    def no_builder(settings):
        raise AssertionError("dry run must not reach the real builder")

    monkeypatch.setattr(api, "make_build_backend", no_builder)
    monkeypatch.setattr(api, "HarnessRunner", InlineRunner)
    env.write("base", "FROM fedora\nCOMMIT base\n")

    assert _main("build", "base", "--dry-run") == 0
    assert capsys.readouterr().out.splitlines() == ["[BUILT] base"]
    # nothing persists between dry runs
    assert _main("build", "base", "-n") == 0
    assert capsys.readouterr().out.splitlines() == ["[BUILT] base"]


def test_build_dry_run_reports_directive_failures(env, monkeypatch, capsys):
    monkeypatch.setattr(api, "HarnessRunner", InlineRunner)
    env.write("base", "FROM fedora\nRUN false\nCOMMIT base\n")
    assert _main("build", "base", "--dry-run") == 1
    assert capsys.readouterr().out.startswith("[FAILED] base at directive:RUN")


def test_build_needs_targets(env, capsys):
    assert _main("build") == 1
    assert "--all" in capsys.readouterr().err


def test_build_cycle_is_an_error(env, backend, capsys):
    env.write("a", "FROM fedora\n", depends_on=["b"])
    env.write("b", "FROM fedora\n", depends_on=["a"])
    assert _main("build", "a") == 1
    err = capsys.readouterr().err
    assert err.startswith("Error: Cycle detected")
    assert backend.calls == []


def test_build_unknown_definition_hint(env, backend, capsys):
    env.write("base", "FROM fedora\n")
    assert _main("build", "bsae") == 1
    assert "Did you mean 'base'?" in capsys.readouterr().err


def test_up_and_down(env, backend, capsys):
    env.write("base", "FROM fedora\nCFG env A=1\nCOMMIT base\n")
    _main("build", "base")
    capsys.readouterr()

    assert _main("up", "base") == 0
    assert capsys.readouterr().out.strip() == "[CREATED] base"
    assert backend.containers["base"].args == ("--env", "A=1")

    assert _main("down") == 0
    assert capsys.readouterr().out.strip() == "[REMOVED] base"


def test_list(env, capsys):
    env.write("base", "FROM fedora\n")
    env.write("app", "FROM base\n", depends_on=["base"])
    assert _main("list") == 0
    assert capsys.readouterr().out.splitlines() == ["app (depends on: base)", "base"]

    assert _main("list", "--json") == 0
    assert json.loads(capsys.readouterr().out)[0] == {
        "depends_on": ["base"],
        "name": "app",
        "path": str(env.root / "app.box"),
    }


def test_create_without_editor(env, capsys):
    assert _main("create", "fresh", "--no-edit") == 0
    assert (env.root / "fresh.box").exists()
    assert "[OK] Created fresh" in capsys.readouterr().out

    assert _main("create", "fresh", "--no-edit") == 1
    assert "already exists" in capsys.readouterr().err


def test_edit_writes_back_valid_changes(env, monkeypatch, capsys):
    path = env.write("base", "FROM fedora\n")
    monkeypatch.delenv("VISUAL", raising=False)
    monkeypatch.setenv("EDITOR", "sh -c 'echo \"COMMIT base\" >> \"$0\"'")

    assert _main("edit", "base") == 0
    assert "[OK] Updated base" in capsys.readouterr().out
    assert path.read_text(encoding="utf-8").endswith("COMMIT base\n")


def test_edit_rejects_invalid_result(env, monkeypatch, capsys):
    path = env.write("base", "FROM fedora\n")
    before = path.read_text(encoding="utf-8")
    monkeypatch.setenv("VISUAL", "sh -c 'echo no-shebang > \"$0\"'")

    assert _main("edit", "base") == 1
    assert "shebang" in capsys.readouterr().err
    assert path.read_text(encoding="utf-8") == before


def test_edit_unchanged(env, monkeypatch, capsys):
    env.write("base", "FROM fedora\n")
    monkeypatch.setenv("VISUAL", "true")
    assert _main("edit", "base") == 0
    assert "unchanged" in capsys.readouterr().out


def test_edit_without_editor(env, monkeypatch, capsys):
    env.write("base", "FROM fedora\n")
    monkeypatch.delenv("VISUAL", raising=False)
    monkeypatch.delenv("EDITOR", raising=False)
    assert _main("edit", "base") == 1
    assert "$EDITOR" in capsys.readouterr().err


def test_delete_with_confirmation(env, monkeypatch, capsys):
    path = env.write("base", "FROM fedora\n")
    monkeypatch.setattr("builtins.input", lambda prompt: "n")
    assert _main("delete", "base") == 1
    assert path.exists()

    assert _main("delete", "base", "-y") == 0
    assert not path.exists()


def test_delete_missing(env, capsys):
    assert _main("delete", "nope", "-y") == 1
    assert "does not exist" in capsys.readouterr().err


@pytest.mark.parametrize("shell,marker", [("posix", "FROM() {"), ("fish", "function FROM")])
def test_init_prints_prelude(env, capsys, shell, marker):
    assert _main("init", shell) == 0
    assert marker in capsys.readouterr().out


def test_config_outside_harness(env, capsys):
    assert _main("config", "RUN", "true") == 1
    assert "No active harness execution" in capsys.readouterr().err


def test_config_without_directive(env, capsys):
    assert _main("config") == 2
