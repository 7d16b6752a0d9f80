"""CLI entrypoint for taskmux."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from taskmux import __version__
from taskmux.config import load_config
from taskmux.errors import ConfigurationError, ResolutionError
from taskmux.session import Session, SessionOptions, plan_rows
from taskmux.utils.logger import setup_logging

FLAGS_LAST_ALIAS = "--flags=last"


def split_arguments(args: Sequence[str]) -> tuple[list[str], list[str], bool]:
    """Separate task names from pass-through flags.

    Returns ``(names, forward_args, flags_last)``. An unrecognized ``--flag``
    followed by a token that does not start with ``--`` takes that token as
    its value; ``--flag=value`` stays a single token. A bare short flag
    (``-p 3000``) takes a following token that does not start with ``-``;
    ``-p3000`` stays a single token.
    """
    names: list[str] = []
    forward: list[str] = []
    flags_last = False
    i = 0
    while i < len(args):
        arg = args[i]
        nxt = args[i + 1] if i + 1 < len(args) else None
        if arg == FLAGS_LAST_ALIAS:
            flags_last = True
        elif arg.startswith("--"):
            forward.append(arg)
            if "=" not in arg and nxt is not None and not nxt.startswith("--"):
                forward.append(nxt)
                i += 1
        elif arg.startswith("-") and arg != "-":
            forward.append(arg)
            if len(arg) == 2 and nxt is not None and not nxt.startswith("-"):
                forward.append(nxt)
                i += 1
        else:
            names.append(arg)
        i += 1
    return names, forward, flags_last


@click.command(
    context_settings={"ignore_unknown_options": True, "allow_extra_args": True},
)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option("--no-root", is_flag=True, help="Skip tasks declared in the root manifest")
@click.option("--watch", is_flag=True, help="Restart a failing task up to the configured limit")
@click.option("--flags-last", is_flag=True, help="Forward extra flags only to the last named task")
@click.option("--stdin", "stdin_task", default=None, help="Task (name or label) that receives keyboard input")
@click.option("--runner", default=None, help="Task runner command (bun, npm, pnpm, yarn)")
@click.option("--strict", is_flag=True, help="Fail when no requested task exists anywhere")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Config file (default: .taskmux.yaml in the project root)",
)
@click.option(
    "--root",
    "project_root",
    default=".",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Project root holding the root manifest",
)
@click.option("--list", "list_only", is_flag=True, help="Print the resolved tasks and exit")
@click.option("--debug", "debug_flag", is_flag=True, help="Enable debug logging on stderr")
@click.version_option(__version__, prog_name="taskmux")
def main(
    args: tuple[str, ...],
    no_root: bool,
    watch: bool,
    flags_last: bool,
    stdin_task: str | None,
    runner: str | None,
    strict: bool,
    config_path: Path | None,
    project_root: Path,
    list_only: bool,
    debug_flag: bool,
) -> None:
    """Run TASKS from the root manifest and every workspace that declares them.

    Unrecognized --flag [value] and -f [value] arguments are forwarded to
    the tasks. A flag takes the token after it as its value, so name the
    tasks before any valueless flag (taskmux dev -v, not taskmux -v dev).
    """
    names, forward_args, alias_flags_last = split_arguments(args)

    try:
        cfg = load_config(project_root, path=config_path)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc

    if debug_flag:
        cfg.debug = True
    if watch:
        cfg.supervisor.watch = True
    if runner:
        cfg.runner.command = runner
    if strict:
        cfg.strict = True
    setup_logging(debug=cfg.debug)

    if not names:
        click.echo("Please provide at least one task name to run", err=True)
        click.echo("Example: taskmux dev lint test", err=True)
        raise SystemExit(1)

    options = SessionOptions(
        names=names,
        forward_args=forward_args,
        include_root=False if no_root else None,
        flags_last=flags_last or alias_flags_last,
        stdin_task=stdin_task,
    )
    session = Session(project_root, cfg, options)

    if list_only:
        raise SystemExit(_print_plan(session))

    try:
        code = asyncio.run(session.run())
    except ResolutionError as exc:
        raise click.ClickException(str(exc)) from exc
    raise SystemExit(code)


def _print_plan(session: Session) -> int:
    plan = session.resolve()
    console = Console(highlight=False)
    if not plan:
        message = f"No task named {', '.join(plan.requested)} found in root or workspaces"
        if session.config.strict:
            raise click.ClickException(message)
        console.print(message)
        return 0

    table = Table(show_header=True, header_style="bold")
    table.add_column("Label")
    table.add_column("Task")
    table.add_column("Directory")
    table.add_column("Args")
    for spec, where in plan_rows(plan):
        table.add_row(spec.display_label, spec.name, where, " ".join(spec.extra_args))
    console.print(table)
    if plan.skipped:
        console.print(f"[dim]Already running in a parent session: {', '.join(plan.skipped)}[/dim]")
    return 0
