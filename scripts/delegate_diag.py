"""Tmux delegate diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from delegate_mcp.config import DelegateSettings
from delegate_mcp.runs import RunStore, TaskStatus
from delegate_mcp.storage import ChromaUnavailableError, RunJournal


def load_store(settings: DelegateSettings) -> RunStore:
    return RunStore(settings.runs_dir.expanduser())


def load_journal(settings: DelegateSettings) -> RunJournal:
    try:
        journal = RunJournal(settings.chroma_persist_path.expanduser()).open()
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    return journal


def cmd_runs(args: argparse.Namespace) -> None:
    store = load_store(DelegateSettings())
    runs = [run for run in (store.load(run_id) for run_id in store.list_run_ids()) if run is not None]
    runs.sort(key=lambda run: run.created_at)
    if args.json:
        print(
            json.dumps(
                [
                    {
                        "run_id": run.id,
                        "status": run.status.value,
                        "created_at": run.created_at.isoformat(),
                        "counts": run.counts(),
                    }
                    for run in runs
                ],
                indent=2,
            )
        )
    else:
        for run in runs:
            print(f"{run.id} [{run.status.value}] {len(run.tasks)} task(s) @ {run.created_at.isoformat()}")


def cmd_show(args: argparse.Namespace) -> None:
    settings = DelegateSettings()
    store = load_store(settings)
    run = store.load(args.run_id)
    if run is None:
        print(f"Run {args.run_id} not found.")
        raise SystemExit(1)

    tail = settings.default_tail_lines if args.tail is None else args.tail
    payload = run.model_dump(mode="json")
    for task, task_payload in zip(run.tasks, payload["tasks"]):
        task_payload["output"] = store.read_output(task, tail)
    print(json.dumps(payload, indent=2))


def cmd_events(args: argparse.Namespace) -> None:
    journal = load_journal(DelegateSettings())
    try:
        events = journal.events_for(args.run_id, event_types=args.type, limit=args.limit)
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)

    print(json.dumps([event.to_dict() for event in events], indent=2, default=str))


def cmd_metrics(args: argparse.Namespace) -> None:
    store = load_store(DelegateSettings())
    run_ids = store.list_run_ids()

    run_counts = {status.value: 0 for status in TaskStatus}
    task_counts = {status.value: 0 for status in TaskStatus}
    unreadable = 0
    for run_id in run_ids:
        run = store.load(run_id)
        if run is None:
            unreadable += 1
            continue
        run_counts[run.status.value] += 1
        for status, count in run.counts().items():
            task_counts[status] += count

    metrics = {
        "runs_total": len(run_ids),
        "runs_unreadable": unreadable,
        "run_status_counts": run_counts,
        "tasks_total": sum(task_counts.values()),
        "task_status_counts": task_counts,
    }
    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tmux delegate diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_runs = sub.add_parser("runs", help="List persisted runs")
    p_runs.add_argument("--json", action="store_true", help="Output JSON")
    p_runs.set_defaults(func=cmd_runs)

    p_show = sub.add_parser("show", help="Print a run's persisted state with task output")
    p_show.add_argument("run_id")
    p_show.add_argument("--tail", type=int, default=None, help="Keep only the last N output lines")
    p_show.set_defaults(func=cmd_show)

    p_events = sub.add_parser("events", help="Dump journal events for a run")
    p_events.add_argument("run_id")
    p_events.add_argument(
        "--type", action="append", default=None, help="Only this event type; repeat for several"
    )
    p_events.add_argument("--limit", type=int, default=None, help="Keep only the latest N events")
    p_events.set_defaults(func=cmd_events)

    p_metrics = sub.add_parser("metrics", help="Show run and task counts by status")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
