#!/usr/bin/env python3
"""
Cedar - AI research notebook

Command-line interface for running Cedar research sessions.

Usage:
    python scripts/cedar.py "compute the mean of [1,2,3,4,5]"
    python scripts/cedar.py --project churn_study "what drives churn in data/churn.csv?"
    python scripts/cedar.py --notebook --project churn_study
    python scripts/cedar.py --resume 3f2a9c1b7d4e
    python scripts/cedar.py --list-projects
    python scripts/cedar.py --deps churn_study --install seaborn
    python scripts/cedar.py --installed pandas
    python scripts/cedar.py --project churn_study --ask "is churn seasonal?"
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from rich.console import Console as RichConsole
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax

from Cedar.commands import CedarApp
from Cedar.config import CedarConfig
from Cedar.execution import OutputKind
from Cedar.execution.dependencies import DependencyStatus
from Cedar.infrastructure import CedarError, DegradedError, handle_error
from Cedar.session import Step, StepKind, StepStatus
from Cedar.utils import configure_logging, console

rich_console = RichConsole()


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Cedar: AI research notebook",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Cedar plans your research goal with a language model, runs the generated
Python step by step, and has every result reviewed before moving on.

Examples:
  python scripts/cedar.py "compute the mean of [1,2,3,4,5]"
  python scripts/cedar.py --list-projects
  python scripts/cedar.py --notebook --project my_study   # type code cells yourself
  python scripts/cedar.py --resume <session_id>           # continue a session as a notebook
        """,
    )

    parser.add_argument("goal", nargs="?", help="Research goal in natural language")
    parser.add_argument("--project", "-p", help="Project id (created from the goal if omitted)")
    parser.add_argument("--resume", "-r", help="Session id to continue in notebook mode")
    parser.add_argument("--notebook", "-n", action="store_true", help="Enter code cells interactively")
    parser.add_argument("--list-projects", "-l", action="store_true", help="List existing projects")
    parser.add_argument("--deps", metavar="PROJECT", help="List dependency records of a project")
    parser.add_argument("--install", metavar="PACKAGE", help="With --deps: install a package for the project")
    parser.add_argument("--ask", metavar="QUESTION", help="With --project: record an open research question")
    parser.add_argument("--answer", nargs=2, metavar=("QUESTION_ID", "ANSWER"), help="With --project: answer a question")
    parser.add_argument("--questions", action="store_true", help="With --project: list research questions")
    parser.add_argument("--installed", metavar="FILTER", nargs="?", const="",
                        help="List packages installed in the notebook interpreter")
    parser.add_argument("--no-color", action="store_true", help="Plain console output")
    parser.add_argument("--write-up", "-w", action="store_true", help="Print the Markdown write-up afterwards")
    parser.add_argument("--config", "-c", type=Path, help="Path to cedar_config.yaml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    return parser.parse_args()


def render_step(step: Step) -> None:
    """Show one recorded step: code, output and verdict."""
    result = step.result
    console.step_start(step.index, step.kind.value, step.title or "")

    if step.kind.is_code:
        rich_console.print(Panel(Syntax(step.content, "python", line_numbers=False), title="code", expand=False))
    else:
        rich_console.print(Markdown(step.content))

    if result is None:
        return

    if result.status == StepStatus.FAILED:
        rich_console.print(Panel(result.error or "", title="error", border_style="red"))
    elif step.kind.is_code and result.formatted_output:
        if result.output_kind == OutputKind.JSON:
            body = Syntax(result.formatted_output, "json")
        elif result.output_kind == OutputKind.TABLE:
            body = Markdown(result.formatted_output)
        else:
            body = result.formatted_output
        rich_console.print(Panel(body, title=f"output ({result.output_kind.value})", border_style="green"))

    for line in result.logs:
        console.debug(line)
    console.step_result(step.index, result.status.value, result.elapsed_ms)

    if step.verdict is not None:
        verdict = step.verdict
        console.verdict(verdict.valid, verdict.confidence, verdict.next_action.value)
        for issue in verdict.issues:
            console.warning(issue)
        for suggestion in verdict.suggestions:
            console.info(suggestion)


def list_projects(app: CedarApp) -> None:
    console.header("Cedar Projects")
    projects = app.list_projects()
    if not projects:
        console.info("No projects found.")
        return
    for project in projects:
        print(f"\n  {project['project_id']}")
        print(f"    Name: {project['name']}")
        if project["goal"]:
            print(f"    Goal: {project['goal']}")
        print(f"    Modified: {project['last_modified'][:19]}")
        for session in app.store.list_sessions(project["project_id"]):
            print(f"    - session {session['session_id']}: {session['status']}, {session['steps']} step(s)")
    print()


async def show_dependencies(app: CedarApp, project_id: str, package: str | None) -> None:
    if package:
        record = await app.install_dependency(project_id, package)
        installed = record.status == DependencyStatus.INSTALLED
        console.install(record.name, installed)
        if not installed:
            handle_error(
                DegradedError(
                    f"Install of {record.name} failed; scripts importing it will fail",
                    context={"pip": (record.error_message or "").strip()[-300:]},
                ),
                "install",
            )
    records = app.list_dependencies(project_id)
    console.header(f"Dependencies: {project_id}")
    if not records:
        console.info("No dependencies recorded.")
    for record in records:
        version = f" {record.version}" if record.version else ""
        print(f"  {record.name}{version}: {record.status.value} ({record.source.value})")


def show_questions(app: CedarApp, project_id: str) -> None:
    console.header(f"Questions: {project_id}")
    questions = app.list_questions(project_id)
    if not questions:
        console.info("No questions recorded.")
    for q in questions:
        print(f"  [{q.question_id}] {q.question} ({q.status})")
        if q.answer:
            print(f"      {q.answer}")


async def show_installed(app: CedarApp, name_filter: str) -> None:
    try:
        packages = await app.installer.list_installed(name_filter or None)
    except RuntimeError as e:
        console.error(str(e))
        return
    console.header(f"Installed packages ({app.installer.python_executable})")
    for package in packages:
        print(f"  {package['name']} {package['version']}")
    console.info(f"{len(packages)} package(s)")


async def run_notebook(app: CedarApp, session_id: str) -> None:
    """Read code cells from stdin; a line with only ';;' ends a cell."""
    state = app.get_session(session_id)
    console.header(f"Notebook session {state.session_id}")
    console.info("Enter Python code. End a cell with ';;' on its own line; ':quit' to leave.")
    for step in state.steps:
        render_step(step)

    while True:
        lines = []
        while True:
            try:
                line = input("... " if lines else ">>> ")
            except EOFError:
                line = ":quit"
            if line.strip() == ":quit":
                if lines:
                    break
                return
            if line.strip() == ";;":
                break
            lines.append(line)
        if not lines:
            continue
        step = await app.execute_step(state.session_id, "\n".join(lines), kind=StepKind.EXECUTABLE)
        render_step(step)
        if line.strip() == ":quit":
            return


async def main() -> int:
    args = parse_args()
    configure_logging("DEBUG" if args.verbose else "WARNING")
    console.set_verbose(args.verbose)
    if args.no_color:
        console.enable_colors(False)

    config = CedarConfig(args.config) if args.config else CedarConfig()

    async with CedarApp(config) as app:
        try:
            if args.list_projects:
                list_projects(app)
                return 0

            if args.deps:
                await show_dependencies(app, args.deps, args.install)
                return 0

            if args.ask or args.answer or args.questions:
                if not args.project:
                    console.error("Question options need --project.")
                    return 2
                if args.ask:
                    entry = app.add_question(args.project, args.ask)
                    console.success("Question recorded", detail=entry.question_id)
                if args.answer:
                    app.answer_question(args.project, *args.answer)
                show_questions(app, args.project)
                return 0

            if args.installed is not None:
                await show_installed(app, args.installed)
                return 0

            if args.resume:
                await run_notebook(app, args.resume)
                return 0

            if args.notebook:
                state = app.new_session(args.project, args.goal or "")
                await run_notebook(app, state.session_id)
                return 0

            if not args.goal:
                console.error("A research goal is required (or use --list-projects / --notebook).")
                return 2

            project_id = args.project or app.create_project(args.goal[:60], goal=args.goal).project_id
            console.header(f"Cedar: {args.goal[:50]}")
            outcome = await app.start_research(project_id, args.goal, on_step=render_step)

            session = outcome.session
            if outcome.completed:
                console.success("Research complete", detail=f"session {session.session_id}")
            else:
                console.warning(f"Research halted: {outcome.halt_reason}", detail=f"session {session.session_id}")
                if outcome.verdict and outcome.verdict.next_step_recommendation:
                    console.info(outcome.verdict.next_step_recommendation)

            if args.write_up:
                rich_console.print(Markdown(app.generate_write_up(project_id, session.session_id)))
            return 0 if outcome.completed else 1

        except CedarError as e:
            handle_error(e, "cedar")
            return 1


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        console.warning("Interrupted")
        sys.exit(130)
