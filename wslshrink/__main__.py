# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# wslshrink/__main__.py
from __future__ import annotations

import sys
import traceback
from typing import Mapping, Optional, Sequence

from .cli.argument_parser import parse_args_with_config
from .config.options import ShrinkOptions
from .core.exceptions import Fatal, WslShrinkError, format_exception_for_cli
from .core.logger import Log
from .core.utils import U
from .modes.diagnose_mode import DiagnoseMode
from .orchestrator.orchestrator import ShrinkOrchestrator
from .runtime.engine import DockerDesktop
from .runtime.host import WindowsHost
from .runtime.wsl import WslCli


def _print_stderr(msg: str) -> None:
    print(msg, file=sys.stderr)


def run(argv: Optional[Sequence[str]] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    logger = None

    # Phase 1: parse (Fatal can happen here)
    try:
        args, _conf, logger = parse_args_with_config(argv)
        options = ShrinkOptions.from_args(args, environ)
    except Fatal as e:
        if logger is None:
            _print_stderr(f"💥 ERROR    {e}")
        else:
            logger.error("💥 %s", format_exception_for_cli(e, verbose=1))
        return e.code
    except KeyboardInterrupt:
        _print_stderr("Interrupted by user (Ctrl+C).")
        return 130

    runtime = WslCli(logger)
    host = WindowsHost(logger)

    if args.diagnose:
        DiagnoseMode(logger, runtime, host, options).run()
        return 0

    orchestrator = ShrinkOrchestrator(logger, runtime, DockerDesktop(logger, options.engine_path, service=options.engine_service), host)

    if args.dry_run:
        for line in orchestrator.plan(options):
            print(line)
        return 0

    # Phase 2: run the workflow
    try:
        result = orchestrator.run(options)
    except WslShrinkError as e:
        Log.fail(logger, format_exception_for_cli(e, verbose=max(1, args.verbose)))
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted by user (Ctrl+C). Check `wsl --list` and start Docker Desktop if the unit is missing.")
        return 130
    except Exception as e:
        logger.error("💥 UNHANDLED %s: %s", type(e).__name__, e)
        logger.debug(traceback.format_exc())
        return 1

    if args.json_summary:
        print(U.json_dump(result.to_dict()))
    return 0


def main() -> None:
    raise SystemExit(run())


if __name__ == "__main__":
    main()
