"""
Command-Line Interface - Argument Parsing and Entry Point

This module provides the command-line interface for py2matlab. It handles:
- Checking that a usable engine is installed
- Streaming JSON-lines items through a MATLAB processing node
- Loading engine options from configuration files

Usage:
    python -m py2matlab check
    python -m py2matlab run scale.m --input items.jsonl
    python -m py2matlab run "frame.value = frame.value * 2;" --one-shot
"""

import sys
import argparse
import json
import logging
from typing import Any, Dict, IO, List, Optional

from py2matlab.core.error_formatting import format_error, log_error
from py2matlab.core.errors import Py2MatlabError, wrap_external_error
from py2matlab.models.engine import EngineOptions
from py2matlab.pipeline.matlab_node import MatlabProcessingNode
from py2matlab.services.configuration_manager import ConfigurationManager
from py2matlab.services.engine_locator import EngineLocator


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: List of arguments to parse. If None, uses sys.argv[1:]

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="py2matlab",
        description="Run pipeline items through a MATLAB engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s check --executable /opt/matlab/bin/matlab
  %(prog)s run scale.m --input items.jsonl
  %(prog)s run "frame.value = frame.value * 2;" --config engine.yaml
        """
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level (default: WARNING)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Locate the engine and check its version")
    check.add_argument(
        "--executable",
        type=str,
        default=None,
        help="Engine executable (default: matlab)"
    )

    run = subparsers.add_parser("run", help="Process JSON-lines items with a script")
    run.add_argument(
        "script",
        type=str,
        help="Path to a .m function file, or inline source operating on 'frame'"
    )
    run.add_argument(
        "--config",
        type=str,
        default=None,
        help="Engine options file (.json, .yaml or .yml)"
    )
    run.add_argument(
        "--executable",
        type=str,
        default=None,
        help="Engine executable (overrides the config file)"
    )
    run.add_argument(
        "--host",
        type=str,
        default=None,
        help="Session listener address"
    )
    run.add_argument(
        "--port",
        type=int,
        default=None,
        help="Session listener port (0 picks a free port)"
    )
    run.add_argument(
        "--one-shot",
        action="store_true",
        help="Start a fresh engine process for every item"
    )
    run.add_argument(
        "--input",
        type=str,
        default=None,
        help="JSON-lines input file (default: standard input)"
    )

    return parser.parse_args(args)


def setup_logging(level: str):
    """Configure application logging.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = getattr(logging, level.upper(), None)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr
    )


def build_options(parsed_args: argparse.Namespace) -> EngineOptions:
    """Combine the config file (if any) with command-line overrides.

    Raises:
        ConfigurationError: If the options are invalid
    """
    overrides: Dict[str, Any] = {}
    for name in ('executable', 'host', 'port'):
        value = getattr(parsed_args, name)
        if value is not None:
            overrides[name] = value
    if parsed_args.one_shot:
        overrides['persistent'] = False

    manager = ConfigurationManager()
    if parsed_args.config:
        return manager.load(parsed_args.config, overrides)
    return manager.from_dict(overrides)


def check_engine(parsed_args: argparse.Namespace) -> int:
    """Print the engine location and version."""
    locator = EngineLocator(parsed_args.executable or EngineOptions.executable)
    version = locator.verify()
    print(f"{locator.resolved_path} (version {version})")
    return 0


def read_items(stream: IO[str]):
    """Yield (line_number, item_or_error) for every non-empty JSON line."""
    for line_number, line in enumerate(stream, start=1):
        if not line.strip():
            continue
        try:
            yield line_number, json.loads(line)
        except json.JSONDecodeError as e:
            yield line_number, e


def run_items(parsed_args: argparse.Namespace, stream: IO[str]) -> int:
    """Build a node, push every input item through it and print the results.

    Results are printed in input order. Failed items are reported on stderr.

    Returns:
        Exit code (0 = every item succeeded, 1 = at least one failed)
    """
    logger = logging.getLogger(__name__)
    node = MatlabProcessingNode(parsed_args.script, build_options(parsed_args))
    node.build().result()

    failures = 0
    try:
        pending = []
        for line_number, item in read_items(stream):
            if isinstance(item, Exception):
                pending.append((line_number, None, item))
            else:
                pending.append((line_number, node.process(item), None))

        for line_number, future, error in pending:
            if future is not None:
                try:
                    result = future.result()
                except Exception as e:
                    error = e
                else:
                    print(json.dumps(result, default=str), flush=True)
                    continue
            failures += 1
            print(f"Item on line {line_number} failed: {format_error(error)}",
                  file=sys.stderr)
    finally:
        node.destroy().result()

    logger.info(f"Processed {len(pending)} item(s), {failures} failed")
    return 1 if failures else 0


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for the application.

    Args:
        args: Command-line arguments. If None, uses sys.argv[1:]

    Returns:
        Exit code (0 = success, 1 = error)

    Example:
        sys.exit(main())
    """
    parsed_args = parse_args(args)
    setup_logging(parsed_args.log_level)

    logger = logging.getLogger(__name__)
    logger.debug(f"Arguments: {vars(parsed_args)}")

    try:
        if parsed_args.command == "check":
            return check_engine(parsed_args)

        if parsed_args.input:
            with open(parsed_args.input, 'r', encoding='utf-8') as stream:
                return run_items(parsed_args, stream)
        return run_items(parsed_args, sys.stdin)

    except Py2MatlabError as e:
        print(f"Error: {format_error(e)}", file=sys.stderr)
        return 1
    except OSError as e:
        error = wrap_external_error(e, f"Cannot read input: {e}",
                                    input=getattr(parsed_args, "input", None))
        log_error(error)
        print(f"Error: {format_error(error)}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
