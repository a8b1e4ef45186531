#!/usr/bin/env python3
"""Ralf CLI entrypoint."""

import sys
import argparse
import logging
from pathlib import Path

from ralf.lib.config import RalfConfig, load_config
from ralf.lib.constants import DEFAULT_PRD_PATH, EXECUTION_MODES
from ralf.lib.errors import RalfError
from ralf.runner.loop_state import LoopStateStore
from ralf.commands import start as cmd_start_module
from ralf.commands import status as cmd_status_module
from ralf.commands import cancel as cmd_cancel_module
from ralf.commands import run as cmd_run_module
from ralf.commands import stop_hook as cmd_stop_hook_module
from ralf.commands import check as cmd_check_module
from ralf.commands import update as cmd_update_module
from ralf.commands import unblock as cmd_unblock_module


def resolve_prd_path(args, config: RalfConfig) -> Path:
    """Story set path from --prd, else the active loop's, else prd.json."""
    explicit = getattr(args, 'prd', None)
    if explicit:
        return config.project_dir / explicit

    state = LoopStateStore(config.state_file).current()
    if state:
        return config.project_dir / state.prd_path
    return config.project_dir / DEFAULT_PRD_PATH


def cmd_start(args, config):
    return cmd_start_module.cmd_start(args, config)


def cmd_status(args, config):
    return cmd_status_module.cmd_status(args, config)


def cmd_cancel(args, config):
    return cmd_cancel_module.cmd_cancel(args, config)


def cmd_run(args, config):
    return cmd_run_module.cmd_run(args, config)


def cmd_stop_hook(args, config):
    return cmd_stop_hook_module.cmd_stop_hook(args, config)


def cmd_check(args, config):
    return cmd_check_module.cmd_check(args, config, resolve_prd_path(args, config))


def cmd_update(args, config):
    return cmd_update_module.cmd_update(args, config, resolve_prd_path(args, config))


def cmd_unblock(args, config):
    return cmd_unblock_module.cmd_unblock(args, config, resolve_prd_path(args, config))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='ralf', description='Ralf - PRD-driven development loop')
    parser.add_argument('--project-dir', '-C', default='.', help='Project directory (default: current directory)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Log progress to stderr')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # ralf start
    p_start = subparsers.add_parser('start', help='Start a loop for a story set')
    p_start.add_argument('prd', nargs='?', default=DEFAULT_PRD_PATH, help='Path to prd.json (default: prd.json)')
    p_start.add_argument('--max-iterations', type=int, default=0,
                         help='Maximum iterations before auto-stop (default: unlimited)')
    p_start.add_argument('--mode', choices=EXECUTION_MODES,
                         help="Execution mode (default: the story set's executionMode)")
    p_start.add_argument('--completion-promise', help='Completion phrase (default: COMPLETE)')
    p_start.set_defaults(func=cmd_start)

    # ralf status
    p_status = subparsers.add_parser('status', help='Show loop and story progress')
    p_status.set_defaults(func=cmd_status)

    # ralf cancel
    p_cancel = subparsers.add_parser('cancel', help='Cancel the active loop')
    p_cancel.set_defaults(func=cmd_cancel)

    # ralf run
    p_run = subparsers.add_parser('run', help='Drive the active loop with the configured executor')
    p_run.add_argument('--once', action='store_true', help='Run a single iteration')
    p_run.add_argument('--executor-cmd', help='Executor command (overrides .ralf/config.yaml)')
    p_run.add_argument('--script', help='Replay scripted results from a JSON file instead of executing')
    p_run.set_defaults(func=cmd_run)

    # ralf stop-hook
    p_stop = subparsers.add_parser('stop-hook', help='Claude Code stop hook (reads hook input on stdin)')
    p_stop.set_defaults(func=cmd_stop_hook)

    # ralf check
    p_check = subparsers.add_parser('check', help='Check whether all stories pass')
    p_check.add_argument('prd', nargs='?', help='Path to prd.json')
    p_check.set_defaults(func=cmd_check)

    # ralf update
    p_update = subparsers.add_parser('update', help="Set a story's pass status")
    p_update.add_argument('story', help='Story ID')
    p_update.add_argument('status', help='pass|fail (also true/false, 1/0)')
    p_update.add_argument('--notes', '-n', help='Notes stored on the story')
    p_update.add_argument('--prd', help='Path to prd.json')
    p_update.set_defaults(func=cmd_update)

    # ralf unblock
    p_unblock = subparsers.add_parser('unblock', help='Clear a blocked story and reset its retries')
    p_unblock.add_argument('story', help='Story ID')
    p_unblock.add_argument('--prd', help='Path to prd.json')
    p_unblock.set_defaults(func=cmd_unblock)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    config = load_config(Path(args.project_dir).resolve())
    try:
        return args.func(args, config)
    except RalfError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return e.exit_code


if __name__ == '__main__':
    sys.exit(main())
