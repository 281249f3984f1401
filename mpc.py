#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2025-2026 gwz

import argparse
import dataclasses
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from mp_config import CONFIG_FILENAME, BundleConfig, ConfigError, OutputConfig, load_config
from mp_context import BundleContext, LogLevel
from mp_diagnostics import Diagnostic
from mp_driver import BundleResult, MinipackDriver
from mp_logger import log_error, log_info, log_warning


def _load_file_lines(path: str, cache: Dict[str, List[str]]) -> List[str]:
    if path not in cache:
        text = Path(path).read_text(encoding="utf-8")
        cache[path] = text.splitlines()
    return cache[path]


def print_diagnostics(result: BundleResult, context: BundleContext) -> None:
    file_cache: Dict[str, List[str]] = {}

    for diag in result.diagnostics:
        print_diagnostic_with_snippet(diag, file_cache, context)


def print_diagnostic_with_snippet(diag: Diagnostic, file_cache: Dict[str, List[str]], context: Optional[BundleContext] = None) -> None:
    # First line: header
    log_error(context, diag.format())

    if not diag.filename or diag.line is None:
        return

    try:
        lines = _load_file_lines(diag.filename, file_cache)
    except OSError:
        # Can't read file; fall back to header only
        return

    line_idx = diag.line - 1
    if not (0 <= line_idx < len(lines)):
        return

    src_line = lines[line_idx]

    width = max(5, len(str(diag.line)))
    log_error(context, f"{diag.line:>{width}} | " + src_line)

    if diag.column is None:
        return

    caret_prefix = " " * width + " | " + " " * (max(1, diag.column) - 1)
    log_error(context, caret_prefix + "^")


def build_bundle_context(args: argparse.Namespace) -> BundleContext:
    """Build a BundleContext from command-line arguments."""
    verbosity = getattr(args, 'verbosity', 0)
    if verbosity >= 3:
        log_level = LogLevel.DEBUG
    elif verbosity >= 1:
        log_level = LogLevel.INFO
    else:
        log_level = LogLevel.ERROR

    return BundleContext(
        jobs=max(1, getattr(args, 'jobs', 1)),
        log_rich_format=getattr(args, 'log', False),
        log_level=log_level,
    )


def build_config(context: BundleContext, args: argparse.Namespace) -> BundleConfig:
    """
    Merge the config file (explicit -c, or ./minipack.config.json when no
    entry is given) with command-line overrides.
    """
    config: Optional[BundleConfig] = None
    config_path = getattr(args, 'config', None)
    if config_path is None and args.entry is None and Path(CONFIG_FILENAME).is_file():
        config_path = CONFIG_FILENAME
    if config_path is not None:
        log_info(context, f"Loading config: {config_path}")
        config = load_config(config_path)

    if args.entry is not None:
        entry = Path(args.entry)
        if config is not None and config.entry != entry:
            log_warning(context, f"Entry '{entry}' overrides '{config.entry}' from {config_path}")
        config = dataclasses.replace(config, entry=entry) if config else BundleConfig(entry=entry)
    if config is None:
        raise ConfigError(f"[CFG-0010] no entry module given and no {CONFIG_FILENAME} found")

    output_path = getattr(args, 'output_path', None)
    filename = getattr(args, 'filename', None)
    if output_path is not None or filename is not None:
        config = dataclasses.replace(
            config,
            output=OutputConfig(
                path=Path(output_path) if output_path is not None else config.output.path,
                filename=filename if filename is not None else config.output.filename,
            ),
        )
    return config


def _prepare(args: argparse.Namespace):
    """Return (context, config, driver), or (context, None, None) on config errors."""
    context = build_bundle_context(args)
    try:
        config = build_config(context, args)
    except ConfigError as e:
        log_error(context, Diagnostic(kind="error", message=f"config: {e.message}", filename=e.filename).format())
        return context, None, None
    return context, config, MinipackDriver(context=context)


def cmd_build(args: argparse.Namespace) -> int:
    """Bundle the entry module and write the artifact."""
    context, config, driver = _prepare(args)
    if driver is None:
        return 1

    result = driver.run(config)
    print_diagnostics(result, context=context)
    return 1 if result.has_errors() else 0


def cmd_gen(args: argparse.Namespace) -> int:
    """Print the bundle to stdout."""
    context, config, driver = _prepare(args)
    if driver is None:
        return 1

    result = driver.bundle(config.entry)
    print_diagnostics(result, context=context)
    if result.artifact is None:
        return 1
    sys.stdout.write(result.artifact.text)
    return 0


def cmd_graph(args: argparse.Namespace) -> int:
    """Dump the module graph: every module with its resolved imports."""
    context, config, driver = _prepare(args)
    if driver is None:
        return 1

    result = driver.bundle(config.entry)
    print_diagnostics(result, context=context)
    if result.graph is None:
        return 1

    for module_id, module in result.graph.modules.items():
        marker = " (entry)" if module_id == result.graph.entry_id else ""
        print(f"=== Module {module_id}{marker} ===")
        if module.import_map:
            for specifier, target in module.import_map.items():
                print(f"  {specifier} -> {target}")
        else:
            print("  <no imports>")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Bundle to a temporary file and run it with the current interpreter."""
    context, config, driver = _prepare(args)
    if driver is None:
        return 1

    with tempfile.TemporaryDirectory(prefix="minipack-") as tmp:
        run_config = dataclasses.replace(config, output=OutputConfig(path=Path(tmp), filename=config.output.filename))
        result = driver.run(run_config)
        print_diagnostics(result, context=context)
        if result.has_errors():
            return 1

        cmd = [sys.executable, str(result.output_path)] + args.args
        log_info(context, f"Running: {' '.join(cmd)}")
        try:
            return subprocess.run(cmd).returncode
        except KeyboardInterrupt:
            return 130


def _add_entry_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "entry",
        nargs="?",
        default=None,
        help=f"Entry module path (default: 'entry' from {CONFIG_FILENAME})",
    )


def _add_output_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--output-path", "-o", help="Output directory (default: dist)")
    parser.add_argument("--filename", "-f", help="Output file name (default: bundle.py)")


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="mpc", description="minipack: bundle Python modules into one script")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    parser.add_argument("-v", "--verbose",
                        action='count',
                        default=0,
                        dest='verbosity',
                        help="Increase verbosity: -v=INFO, -vvv=DEBUG")
    parser.add_argument("-l", "--log",
                        action='store_true',
                        default=False,
                        help="Enable rich log formatting (timestamps, levels)")
    parser.add_argument("-j", "--jobs",
                        type=int,
                        default=1,
                        help="Number of threads used to parse modules (default: 1)")
    parser.add_argument("-c", "--config",
                        default=None,
                        help=f"Path to a JSON config file (default: ./{CONFIG_FILENAME} if present)")

    ###########################
    # build command
    ###########################
    p_build = subparsers.add_parser("build", help="Bundle and write the output file")
    _add_output_args(p_build)
    _add_entry_arg(p_build)
    p_build.set_defaults(func=cmd_build)

    ###########################
    # gen command
    ###########################
    p_gen = subparsers.add_parser("gen", help="Print the bundle to stdout")
    _add_entry_arg(p_gen)
    p_gen.set_defaults(func=cmd_gen)

    ###########################
    # graph command
    ###########################
    p_graph = subparsers.add_parser("graph", help="Dump the module graph")
    _add_entry_arg(p_graph)
    p_graph.set_defaults(func=cmd_graph)

    ###########################
    # run command
    ###########################
    p_run = subparsers.add_parser("run", help="Bundle and run")
    _add_entry_arg(p_run)
    p_run.add_argument("args", nargs="*", help="Arguments to pass to the program")
    p_run.set_defaults(func=cmd_run)

    args = parser.parse_args(argv)

    rc = args.func(args)
    raise SystemExit(rc)


if __name__ == "__main__":
    main()
