import argparse
import asyncio
import json
import sys
from typing import List, Optional

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from shotpipe.director import StageDirector
from shotpipe.pipeline.batch import BatchProgress
from shotpipe.pipeline.nine_grid import panel_summary
from shotpipe.tools.base import ToolResponse

console = Console()


def _report(resp: ToolResponse) -> int:
    if resp.success:
        if resp.message:
            console.print(f"[green]{resp.message}[/green]")
        return 0
    if resp.aborted:
        console.print("[yellow]Stopped: credentials need attention.[/yellow]")
        return 2
    console.print(f"[red]{resp.message or 'Failed.'}[/red]")
    return 1


def _open(director: StageDirector, project_id: str) -> bool:
    resp = director.open_project(project_id)
    if not resp.success:
        _report(resp)
        return False
    return True


def cmd_import(director: StageDirector, args) -> int:
    with open(args.file, "r", encoding="utf-8") as f:
        snapshot = json.load(f)
    resp = director.import_project(snapshot)
    if resp.success:
        console.print(f"Imported project [bold]{resp.content['id']}[/bold]")
    return _report(resp)


def cmd_list(director: StageDirector, args) -> int:
    table = Table(title="Projects")
    table.add_column("ID")
    table.add_column("Title")
    for row in director.storage.list_projects() if director.storage else []:
        table.add_row(row["project_id"], row["title"])
    console.print(table)
    return 0


def cmd_status(director: StageDirector, args) -> int:
    if not _open(director, args.project_id):
        return 1
    resp = director.status(args.project_id)
    if not resp.success:
        return _report(resp)
    table = Table(title=f"Project {args.project_id}")
    for col in ("#", "Shot", "Start", "End", "Video", "Nine-grid"):
        table.add_column(col)
    for row in resp.content:
        table.add_row(
            str(row["index"] + 1),
            row["actionSummary"][:40],
            row["start"] or "-",
            row["end"] or "-",
            row["video"] or "-",
            row["nineGrid"] or "-",
        )
    console.print(table)
    return 0


def cmd_batch(director: StageDirector, args) -> int:
    if not _open(director, args.project_id):
        return 1
    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Starting", total=None)

        def on_progress(update: BatchProgress) -> None:
            progress.update(task, total=update.total, completed=update.current, description=update.message)

        resp = asyncio.run(director.batch_generate(args.project_id, args.mode, on_progress))
    return _report(resp)


def cmd_video(director: StageDirector, args) -> int:
    if not _open(director, args.project_id):
        return 1
    with console.status("Generating video..."):
        resp = asyncio.run(director.generate_video(args.project_id, args.shot_id))
    if resp.success:
        console.print(resp.content.get("videoUrl"))
    return _report(resp)


def cmd_nine_grid(director: StageDirector, args) -> int:
    if not _open(director, args.project_id):
        return 1

    async def run() -> ToolResponse:
        resp = await director.generate_nine_grid(args.project_id, args.shot_id)
        if not resp.success or args.select is None:
            return resp
        if args.select == 0:
            return await director.use_nine_grid_image(args.project_id, args.shot_id, args.role)
        return await director.select_nine_grid_panel(args.project_id, args.shot_id, args.select - 1, args.role)

    with console.status("Planning and rendering nine-grid..."):
        resp = asyncio.run(run())
    shot = director.repository.get(args.project_id).shot(args.shot_id)
    if shot is not None and shot.nine_grid and shot.nine_grid.panels:
        for line in panel_summary(shot.nine_grid.panels):
            console.print(line)
    return _report(resp)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shotpipe", description="Shot production pipeline")
    parser.add_argument("--db", default=None, help="Project database path (defaults to config)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import", help="Import a project snapshot (JSON)")
    p.add_argument("file")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("list", help="List stored projects")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("status", help="Show per-shot generation status")
    p.add_argument("project_id")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("batch", help="Generate start frames for many shots")
    p.add_argument("project_id")
    p.add_argument("--mode", choices=["auto", "fill_missing", "regenerate_all"], default="auto")
    p.set_defaults(func=cmd_batch)

    p = sub.add_parser("video", help="Generate the video for one shot")
    p.add_argument("project_id")
    p.add_argument("shot_id")
    p.set_defaults(func=cmd_video)

    p = sub.add_parser("nine-grid", help="Plan and render a nine-grid storyboard for one shot")
    p.add_argument("project_id")
    p.add_argument("shot_id")
    p.add_argument("--select", type=int, choices=range(0, 10), default=None,
                   help="Adopt panel 1-9 as a keyframe (0 adopts the whole grid)")
    p.add_argument("--role", choices=["start", "end"], default="start")
    p.set_defaults(func=cmd_nine_grid)
    return parser


def _credential_handler(exc: BaseException) -> bool:
    console.print(f"[red]API key problem:[/red] {exc}. Set SHOTPIPE_API_KEY in .env and try again.")
    return False


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    director = StageDirector.from_config(credential_handler=_credential_handler, db_path=args.db)
    try:
        return args.func(director, args)
    finally:
        if director.storage is not None:
            director.storage.close()


if __name__ == "__main__":
    sys.exit(main())
