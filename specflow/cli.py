import argparse
import logging
import re
from pathlib import Path

from specflow.core.config import load_config
from specflow.core.errors import PersistenceError
from specflow.core.specs import SpecManager
from specflow.core.steering import SteeringManager
from specflow.core.tasks import TaskFile
from specflow.core.workspace import Workspace


def _cmd_status(args) -> int:
    workspace = Workspace(args.root, load_config(args.config))
    try:
        snapshot = workspace.state_store.load(workspace.scope)
    except PersistenceError as exc:
        print(f"Unreadable workflow state: {exc}")
        return 1
    finally:
        workspace.close()
    if snapshot is None:
        print("No workflow in progress")
        return 0
    print(
        f"{snapshot.workflow_name}: step {snapshot.current_step + 1}/{snapshot.total_steps}"
        + (f" (spec: {snapshot.spec_name})" if snapshot.spec_name else "")
    )
    return 0


def _cmd_specs(args) -> int:
    config = load_config(args.config)
    specs = SpecManager(args.root, config.specs_dir)
    for name in specs.list_specs():
        info = specs.get_spec_info(name)
        if info:
            print(f"{name}\t{info.stage}")
    return 0


def _task_number(value: str) -> str:
    if not re.fullmatch(r"\d+(?:\.\d+)?", value):
        raise argparse.ArgumentTypeError(f"not a task number: {value!r}")
    return value


def _cmd_tasks(args) -> int:
    task_file = TaskFile(args.file)
    if args.complete:
        return 0 if task_file.mark_complete(args.complete) else 1
    stats = task_file.stats()
    upcoming = task_file.next_task()
    print(f"{stats.completed}/{stats.total} tasks complete ({stats.percent_complete}%)")
    if upcoming:
        print(f"Next: {upcoming.number}. {upcoming.description}")
    return 0


def _cmd_steering(args) -> int:
    config = load_config(args.config)
    steering = SteeringManager(args.root, config.steering_dir)
    if args.init:
        result = steering.ensure_steering_files()
        for name in result.created:
            print(f"created {name}")
    print(steering.summary(), end="")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="specflow CLI")
    parser.add_argument("--root", type=Path, default=Path.cwd(), help="Workspace root")
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("status", help="Show the persisted workflow position")
    subparsers.add_parser("specs", help="List specs and their stage")

    tasks_parser = subparsers.add_parser("tasks", help="Summarize a tasks.md checklist")
    tasks_parser.add_argument("file", help="Path to tasks.md")
    tasks_parser.add_argument(
        "--complete", metavar="NUMBER", type=_task_number, help="Tick a task, e.g. 2.1"
    )

    steering_parser = subparsers.add_parser("steering", help="Check steering files")
    steering_parser.add_argument("--init", action="store_true", help="Write missing templates")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    handlers = {
        "status": _cmd_status,
        "specs": _cmd_specs,
        "tasks": _cmd_tasks,
        "steering": _cmd_steering,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 0
    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
