# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/cli/argument_parser.py
from __future__ import annotations

import argparse
import sys
from typing import Any, Dict, Optional, Sequence, Tuple

from .. import __version__
from ..config.config_loader import Config
from ..config.options import DEFAULT_ENGINE_SERVICE, DEFAULT_POLL_INTERVAL_S, DEFAULT_UNIT, DEFAULT_WAIT_TIMEOUT_S
from ..core.exceptions import ConfigError
from ..core.logger import Log, c
from ..core.utils import U
from .help_texts import WORKFLOW_SUMMARY, YAML_EXAMPLE


class HelpFormatter(argparse.RawDescriptionHelpFormatter, argparse.ArgumentDefaultsHelpFormatter):
    """Keeps the epilog layout and shows defaults."""


def _build_epilog() -> str:
    return (
        c("Workflow:\n", "cyan", ["bold"])
        + c(WORKFLOW_SUMMARY, "cyan")
        + "\n"
        + c("YAML example:\n", "cyan", ["bold"])
        + c(YAML_EXAMPLE, "cyan")
    )


def _add_global_config_logging(p: argparse.ArgumentParser) -> None:
    # Global config/logging (two-phase parse relies on these)
    p.add_argument(
        "--config",
        action="append",
        default=[],
        help="YAML config file (repeatable; later overrides earlier).",
    )
    p.add_argument("--dump-config", action="store_true", help="Print merged config and exit.")
    p.add_argument("--dump-args", action="store_true", help="Print final parsed args and exit.")
    p.add_argument("--version", action="version", version=__version__)
    p.add_argument("-v", "--verbose", action="count", default=0, help="Verbosity: -v, -vv, -vvv (trace)")
    p.add_argument("-q", "--quiet", action="count", default=0, help="Less output: -q warnings, -qq errors")
    p.add_argument("--log-file", dest="log_file", default=None, help="Also write logs to this file.")
    p.add_argument("--json-logs", dest="json_logs", action="store_true", help="Emit logs as NDJSON on stderr.")


def _add_target(p: argparse.ArgumentParser) -> None:
    # What to shrink
    p.add_argument("--unit-name", dest="unit_name", default=DEFAULT_UNIT, help="WSL distribution to shrink.")
    p.add_argument(
        "--export-path",
        dest="export_path",
        default=None,
        help="Where to write the export archive (default: %%TEMP%%\\<unit>-backup.tar).",
    )
    p.add_argument(
        "--disk-folder",
        dest="disk_folder",
        default=None,
        help="Folder holding the disk images (default: %%LOCALAPPDATA%%\\Docker\\wsl).",
    )


def _add_safety_flags(p: argparse.ArgumentParser) -> None:
    # Safety knobs
    p.add_argument("--skip-export", dest="skip_export", action="store_true", help="Do not export before unregistering (data loss).")
    p.add_argument("--force", action="store_true", help="Keep going when export or unregister fails.")
    p.add_argument("--keep-export", dest="keep_export", action="store_true", help="Keep the export archive after the run.")
    p.add_argument("--dry-run", dest="dry_run", action="store_true", help="Print the commands a run would issue and exit.")
    p.add_argument("--diagnose", action="store_true", help="Read-only report (JSON on stdout); changes nothing.")


def _add_tuning(p: argparse.ArgumentParser) -> None:
    # Recreate wait, engine, maintenance
    p.add_argument("--wait-timeout", dest="wait_timeout", type=float, default=DEFAULT_WAIT_TIMEOUT_S, help="Seconds to wait for the unit to reappear.")
    p.add_argument("--poll-interval", dest="poll_interval", type=float, default=DEFAULT_POLL_INTERVAL_S, help="Seconds between checks while waiting.")
    p.add_argument("--engine-path", dest="engine_path", default=None, help="Docker Desktop executable.")
    p.add_argument("--engine-service", dest="engine_service", default=DEFAULT_ENGINE_SERVICE, help="Service started when the executable cannot be launched.")
    p.add_argument("--no-trim", dest="no_trim", action="store_true", help="Skip the volume-wide ReTrim pass.")
    p.add_argument("--journal", default=None, help="Write the last reached checkpoint to this JSON file.")
    p.add_argument("--lock-file", dest="lock_file", default=None, help="Run lock file (default: %%TEMP%%\\wslshrink.lock).")
    p.add_argument("--json-summary", dest="json_summary", action="store_true", help="Print the run result as JSON on stdout.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="wslshrink",
        description=c("wslshrink: reclaim disk space from Docker Desktop's WSL virtual disk", "green", ["bold"]),
        formatter_class=HelpFormatter,
        epilog=_build_epilog(),
    )
    _add_global_config_logging(p)
    _add_target(p)
    _add_safety_flags(p)
    _add_tuning(p)
    return p


def _build_preparser() -> argparse.ArgumentParser:
    # same global flags, nothing else: enough to find config files and set up logging
    pre = argparse.ArgumentParser(add_help=False)
    _add_global_config_logging(pre)
    return pre


def _load_merged_config(logger: Any, cfgs: Sequence[str]) -> Dict[str, Any]:
    if not cfgs:
        return {}
    return Config.load_many(logger, Config.expand_configs(logger, list(cfgs)))


def validate_args(args: argparse.Namespace, logger: Any) -> None:
    if not str(args.unit_name or "").strip():
        raise ConfigError(msg="--unit-name must not be empty")
    try:
        args.wait_timeout = float(args.wait_timeout)
        args.poll_interval = float(args.poll_interval)
    except (TypeError, ValueError) as e:
        raise ConfigError(msg="--wait-timeout and --poll-interval must be numbers", cause=e)
    if args.wait_timeout < 0:
        raise ConfigError(msg="--wait-timeout must be >= 0")
    if args.poll_interval <= 0:
        raise ConfigError(msg="--poll-interval must be > 0")
    if args.diagnose and args.dry_run:
        raise ConfigError(msg="--diagnose and --dry-run are mutually exclusive")
    if args.skip_export and args.keep_export:
        logger.warning("⚠️  --keep-export has no effect with --skip-export")


def parse_args_with_config(
    argv: Optional[Sequence[str]] = None,
    logger: Any = None,
) -> Tuple[argparse.Namespace, Dict[str, Any], Any]:
    """
    Parse argv with YAML config files applied underneath it.

    Global flags are read first to find --config files and set up logging; the merged
    config then becomes parser defaults, so anything given on the command line wins.
    Returns (args, merged config, logger).
    """
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    parser = build_parser()

    args0, _rest = _build_preparser().parse_known_args(argv)

    if logger is None:
        logger = Log.setup(args0.verbose, args0.log_file, quiet=args0.quiet, json_logs=args0.json_logs)

    conf = _load_merged_config(logger, args0.config or [])

    if args0.dump_config:
        print(U.json_dump(conf))
        raise SystemExit(0)

    Config.apply_as_defaults(logger, parser, conf)

    args = parser.parse_args(argv)

    if args0.dump_args:
        print(U.json_dump(vars(args)))
        raise SystemExit(0)

    validate_args(args, logger)
    return args, conf, logger
