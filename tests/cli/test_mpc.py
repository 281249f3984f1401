#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

import json

import pytest

import mpc
from mp_context import LogLevel


def _patch_handlers(monkeypatch):
    calls = []

    def _mk_handler(name):
        def _handler(args):
            calls.append((name, args))
            return 0

        return _handler

    monkeypatch.setattr(mpc, "cmd_build", _mk_handler("build"))
    monkeypatch.setattr(mpc, "cmd_gen", _mk_handler("gen"))
    monkeypatch.setattr(mpc, "cmd_graph", _mk_handler("graph"))
    monkeypatch.setattr(mpc, "cmd_run", _mk_handler("run"))
    return calls


def _run_main(argv):
    with pytest.raises(SystemExit) as exc:
        mpc.main(argv)
    return exc.value.code


@pytest.mark.parametrize("command", ["build", "gen", "graph", "run"])
def test_subcommands_dispatch_to_handlers(monkeypatch, command):
    calls = _patch_handlers(monkeypatch)

    rc = _run_main([command, "app/main.py"])

    assert rc == 0
    assert len(calls) == 1
    name, args = calls[0]
    assert name == command
    assert args.entry == "app/main.py"


def test_run_passes_program_args(monkeypatch):
    calls = _patch_handlers(monkeypatch)

    rc = _run_main(["run", "app/main.py", "--", "alpha", "--beta"])

    assert rc == 0
    _, args = calls[0]
    assert args.args == ["alpha", "--beta"]


def test_global_flags_build_context(monkeypatch):
    calls = _patch_handlers(monkeypatch)

    _run_main(["-vvv", "-l", "-j", "4", "build", "-o", "out", "-f", "app.py", "main.py"])

    _, args = calls[0]
    context = mpc.build_bundle_context(args)
    assert context.log_level == LogLevel.DEBUG
    assert context.log_rich_format is True
    assert context.jobs == 4
    assert args.output_path == "out"
    assert args.filename == "app.py"


def test_missing_command_is_usage_error(monkeypatch):
    _patch_handlers(monkeypatch)

    assert _run_main([]) == 2


def test_build_writes_bundle(write_module, temp_project, monkeypatch):
    write_module("src/main.py", "from .util import value\nprint(value)\n")
    write_module("src/util.py", "value = 'built'\n")
    monkeypatch.chdir(temp_project)

    rc = _run_main(["build", "-o", "out", "src/main.py"])

    assert rc == 0
    bundle = temp_project / "out" / "bundle.py"
    assert bundle.is_file()
    assert "# Generated by minipack" in bundle.read_text(encoding="utf-8")


def test_build_uses_config_file_in_current_directory(write_module, temp_project, monkeypatch):
    write_module("src/main.py", "x = 1\n")
    (temp_project / "minipack.config.json").write_text(
        json.dumps({"entry": "src/main.py", "output": {"path": "release", "filename": "tool.py"}}),
        encoding="utf-8",
    )
    monkeypatch.chdir(temp_project)

    rc = _run_main(["build"])

    assert rc == 0
    assert (temp_project / "release" / "tool.py").is_file()


def test_build_cli_overrides_config(write_module, temp_project, monkeypatch):
    write_module("main.py", "x = 1\n")
    config = temp_project / "custom.json"
    config.write_text(json.dumps({"entry": "main.py"}), encoding="utf-8")
    monkeypatch.chdir(temp_project)

    rc = _run_main(["-c", str(config), "build", "-f", "renamed.py"])

    assert rc == 0
    assert (temp_project / "dist" / "renamed.py").is_file()


def test_cli_entry_overriding_config_entry_warns(write_module, temp_project, monkeypatch, capsys):
    write_module("main.py", "x = 1\n")
    write_module("other.py", "y = 2\n")
    config = temp_project / "custom.json"
    config.write_text(json.dumps({"entry": "main.py"}), encoding="utf-8")
    monkeypatch.chdir(temp_project)

    rc = _run_main(["-v", "-c", str(config), "build", "other.py"])

    assert rc == 0
    err = capsys.readouterr().err
    assert "Entry 'other.py' overrides" in err
    assert str(config) in err


def test_build_without_entry_or_config_fails(temp_project, monkeypatch, capsys):
    monkeypatch.chdir(temp_project)

    rc = _run_main(["build"])

    assert rc == 1
    assert "[CFG-0010]" in capsys.readouterr().err


def test_build_reports_diagnostic_with_snippet(write_module, temp_project, monkeypatch, capsys):
    write_module("main.py", "x = 1\nfrom .util import *\n")
    monkeypatch.chdir(temp_project)

    rc = _run_main(["build", "main.py"])

    assert rc == 1
    err = capsys.readouterr().err
    assert "main.py:2:1: error: syntax: [PAR-0020]" in err
    assert "    2 | from .util import *" in err
    assert "      | ^" in err
    assert not (temp_project / "dist").exists()


def test_gen_prints_bundle(write_module, temp_project, capsys):
    write_module("main.py", "value = 1\n")

    rc = _run_main(["gen", str(temp_project / "main.py")])

    assert rc == 0
    out = capsys.readouterr().out
    assert out.startswith("#!/usr/bin/env python3\n")
    assert "__minipack_bootstrap__" in out


def test_graph_lists_modules_and_imports(write_module, module_id, temp_project, capsys):
    write_module("main.py", "from .util import value\n")
    write_module("util.py", "value = 1\n")

    rc = _run_main(["graph", str(temp_project / "main.py")])

    assert rc == 0
    out = capsys.readouterr().out.splitlines()
    assert out == [
        f"=== Module {module_id('main.py')} (entry) ===",
        f"  ./util -> {module_id('util.py')}",
        f"=== Module {module_id('util.py')} ===",
        "  <no imports>",
    ]


def test_run_executes_bundle_with_args(write_module, temp_project, capfd):
    write_module("main.py", "import sys\nfrom .shout import shout\nprint(shout(sys.argv[1:]))\n")
    write_module("shout.py", "def shout(words):\n    return ' '.join(w.upper() for w in words)\n")

    rc = _run_main(["run", str(temp_project / "main.py"), "hello", "there"])

    assert rc == 0
    assert capfd.readouterr().out == "HELLO THERE\n"


def test_run_propagates_exit_code(write_module, temp_project):
    write_module("main.py", "raise SystemExit(3)\n")

    assert _run_main(["run", str(temp_project / "main.py")]) == 3


def test_verbose_build_logs_progress(write_module, temp_project, monkeypatch, capsys):
    write_module("main.py", "x = 1\n")
    monkeypatch.chdir(temp_project)

    _run_main(["-v", "build", "main.py"])

    err = capsys.readouterr().err
    assert "Building module graph" in err
    assert "Wrote bundle" in err
