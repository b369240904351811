#!/usr/bin/env python3
"""
flowmesh CLI - Run workflow files from the command line.

Commands:
    run    Execute a workflow JSON file and print the result
    nodes  List the registered node types
"""
import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from flowmesh.observability import get_logger, setup_logging
from workflow_runtime import execute_workflow
from workflow_runtime.registry import list_node_types

logger = get_logger(__name__)


def _load_json_file(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def _parse_input(raw: Optional[str]) -> Dict[str, Any]:
    """Trigger payload from an inline JSON string or ``@file``."""
    if not raw:
        return {}
    if raw.startswith("@"):
        data = _load_json_file(raw[1:])
    else:
        data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("Trigger input must be a JSON object")
    return data


def cmd_run(args: argparse.Namespace) -> int:
    """Execute a workflow file."""
    setup_logging()

    try:
        content = _load_json_file(args.workflow)
        trigger_input = _parse_input(args.input)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    # Workflow exports wrap the graph in {"content": {...}}
    if isinstance(content, dict) and "nodes" not in content and isinstance(content.get("content"), dict):
        content = content["content"]

    workflow_id = args.workflow_id or Path(args.workflow).stem
    logger.info(f"Running workflow {workflow_id} from {args.workflow}")

    result = execute_workflow(
        args.user,
        workflow_id,
        content,
        trigger_input,
        deadline_s=args.deadline,
    )
    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if result.success else 1


def cmd_nodes(args: argparse.Namespace) -> int:
    """List registered node types."""
    mappings = list_node_types()
    if args.json:
        print(json.dumps(
            [{"type": m.type, "provider": m.provider, "operation": m.operation} for m in mappings],
            indent=2,
        ))
        return 0

    width = max((len(m.type) for m in mappings), default=0)
    for mapping in mappings:
        print(f"{mapping.type.ljust(width)}  {mapping.provider}  {mapping.operation}")
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="flowmesh",
        description="flowmesh - Sequential workflow execution engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # run command
    run_parser = subparsers.add_parser("run", help="Execute a workflow JSON file")
    run_parser.add_argument("workflow", help="Path to the workflow JSON file")
    run_parser.add_argument("--input", help="Trigger input as JSON, or @path to a JSON file")
    run_parser.add_argument("--user", default="cli", help="User id the run belongs to")
    run_parser.add_argument("--workflow-id", help="Workflow id (defaults to the file name)")
    run_parser.add_argument("--deadline", type=float, help="Overall deadline in seconds")

    # nodes command
    nodes_parser = subparsers.add_parser("nodes", help="List registered node types")
    nodes_parser.add_argument("--json", action="store_true", help="Print as JSON")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "run":
        return cmd_run(args)
    elif args.command == "nodes":
        return cmd_nodes(args)
    else:
        print(f"Unknown command: {args.command}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
