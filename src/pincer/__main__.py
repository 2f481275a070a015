"""Entry point for `python -m pincer` / `pincer`.

Subcommands:
    pincer              Run the host (default)
    pincer tasks        List scheduled tasks and their recent runs
"""

from __future__ import annotations

import argparse
import asyncio


def _run() -> None:
    from pincer.app import PincerApp

    app = PincerApp()
    asyncio.run(app.run())


async def _print_tasks(runs: int) -> None:
    from pincer.db import close_database, get_all_tasks, get_task_run_logs, init_database

    await init_database()
    try:
        tasks = await get_all_tasks()
        if not tasks:
            print("No scheduled tasks.")
            return
        for t in tasks:
            print(
                f"{t.id}  [{t.status}]  {t.group_folder}  "
                f"{t.schedule_type}: {t.schedule_value}  next: {t.next_run or '-'}"
            )
            print(f"    {t.prompt[:80]}")
            for log in await get_task_run_logs(t.id, limit=runs):
                detail = log.error if log.status == "error" else (log.result or "")
                print(f"    {log.run_at}  {log.status}  {log.duration_ms:.0f}ms  {detail[:60]}")
    finally:
        await close_database()


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="pincer",
        description="Run agent invocations for chat conversations and scheduled tasks",
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Run the host (default)")
    tasks_parser = sub.add_parser("tasks", help="List scheduled tasks and recent runs")
    tasks_parser.add_argument(
        "--runs", type=int, default=3, help="Recent runs to show per task (default: 3)"
    )

    args = parser.parse_args()

    match args.command:
        case "tasks":
            asyncio.run(_print_tasks(args.runs))
        case _:
            _run()


if __name__ == "__main__":
    main()
