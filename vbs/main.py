#!/usr/bin/env python3
"""
VBS - Virtual Based Scenography - Main Entry Point

Usage:
    vbs "REST API for a bookstore"            # Build and deploy an API
    vbs prompt="landing page" -t frontend     # Frontend (React / Next.js)
    vbs -t fullstack "task tracker" -s        # Full-stack, extended summary
    vbs list                                  # Registered projects
    vbs open <name>                           # Project info panel
    vbs modify <name> "add a /health route"   # Change an existing project
"""

import argparse
import asyncio
import json
import sys
import traceback
from typing import List, Optional

from rich.console import Console

from vbs import __version__
from vbs.config import VBSConfig
from vbs.exceptions import JSONExtractionError, MissingCredentialError, ProjectNotFoundError, VBSError
from vbs.llm.client import LLMGateway
from vbs.logging_config import logger, setup_logging
from vbs.orchestrator.commands import list_projects, open_project
from vbs.orchestrator.context import BuildRequest
from vbs.orchestrator.modify import ModifyFlow
from vbs.orchestrator.pipeline import BuildPipeline
from vbs.projects.config_store import ConfigStore
from vbs.projects.registry import ProjectRegistry
from vbs.ui.presenter import ConsolePresenter, Presenter
from vbs.ui.prompts import AnswerProvider, DefaultAnswerProvider, InteractiveAnswerProvider


COMMANDS = ("list", "open", "modify")
PROJECT_TYPES = ["api", "frontend", "fullstack"]
PROMPT_PREFIX = "prompt="

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130

MIN_PROMPT_CHARS = 3


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the build command"""
    parser = argparse.ArgumentParser(
        prog="vbs",
        description="VBS - AI-powered project generation and deployment",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
        epilog="""
Examples:
  vbs "REST API for a bookstore with JWT auth"
  vbs prompt="portfolio landing page" -t frontend
  vbs -t fullstack "task tracker with postgres" --summary
  vbs list
  vbs open bookstore-api
  vbs modify bookstore-api "add pagination to GET /books"

Environment:
  ANTHROPIC_API_KEY     Required. Provider credential (.env files are read)
  AI_MODEL_HAIKU        Fast model override
  AI_MODEL_OPUS         Reasoning model override
  SERVER_IPV4           Public address used in links and summaries
        """
    )

    parser.add_argument("-H", "--help", action="help", help="Show this help and exit")

    parser.add_argument(
        "prompt",
        nargs="*",
        help="What to build (prompt='...' is accepted too)"
    )

    parser.add_argument(
        "-t", "--type",
        dest="project_type",
        choices=PROJECT_TYPES,
        default="api",
        help="Project type (default: api)"
    )

    parser.add_argument(
        "-h", "--host",
        dest="show_host",
        action="store_true",
        help="Show host / IP information in the final report"
    )

    parser.add_argument(
        "-s", "--summary",
        dest="extended_summary",
        action="store_true",
        help="Write the extended summary (curl examples, AI notes)"
    )

    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Print stack traces and debug logs to stderr"
    )

    parser.add_argument(
        "-y", "--yes",
        dest="assume_yes",
        action="store_true",
        help="Accept every default without asking"
    )

    parser.add_argument(
        "--dir",
        dest="base_dir",
        type=str,
        help="Parent directory for the new project (skips the directory question)"
    )

    parser.add_argument(
        "-v", "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def create_command_parser(command: str) -> argparse.ArgumentParser:
    """Parser for ``list`` / ``open`` / ``modify``"""
    parser = argparse.ArgumentParser(prog=f"vbs {command}")
    if command in ("open", "modify"):
        parser.add_argument("name", help="Project name or project directory")
    if command == "modify":
        parser.add_argument("change", nargs="*", help="Change description (prompt='...' is accepted too)")
        parser.add_argument("-y", "--yes", dest="assume_yes", action="store_true",
                            help="Apply without confirmation")
    parser.add_argument("-d", "--debug", action="store_true", help="Print stack traces")
    return parser


def normalize_argv(argv: List[str]) -> List[str]:
    """Drop stray ``&`` tokens and unwrap ``prompt=...`` arguments"""
    cleaned = []
    for arg in argv:
        if arg == "&":
            continue
        if arg.startswith(PROMPT_PREFIX):
            arg = arg[len(PROMPT_PREFIX):].strip().strip("'\"")
        cleaned.append(arg)
    return cleaned


def join_words(words: Optional[List[str]]) -> str:
    return " ".join(w for w in (words or []) if w).strip()


def answer_provider(assume_yes: bool, base_dir: Optional[str] = None) -> AnswerProvider:
    if assume_yes:
        return DefaultAnswerProvider(base_dir)
    return InteractiveAnswerProvider(base_dir=base_dir)


def require_credential(config: VBSConfig) -> None:
    if not config.api_key:
        raise MissingCredentialError("ANTHROPIC_API_KEY")


# ==================== Commands ====================

async def run_build(args: argparse.Namespace, config: VBSConfig, presenter: Presenter) -> int:
    answers = answer_provider(args.assume_yes, args.base_dir)

    prompt = join_words(args.prompt)
    if len(prompt) < MIN_PROMPT_CHARS:
        prompt = await answers.ask_text("Describe what you want to build", min_length=MIN_PROMPT_CHARS,
                                        default=prompt or None)

    request = BuildRequest(
        prompt=prompt,
        project_type=args.project_type,
        show_host=args.show_host,
        extended_summary=args.extended_summary,
        debug=args.debug,
        assume_yes=args.assume_yes,
        base_dir=args.base_dir,
    )
    pipeline = BuildPipeline(config, LLMGateway(config), presenter, answers)
    report = await pipeline.run(request)
    return EXIT_OK if report.project_dir else EXIT_ERROR


async def run_command(command: str, args: argparse.Namespace, config: VBSConfig, presenter: Presenter) -> int:
    registry = ProjectRegistry(config.registry_path)
    store = ConfigStore()

    if command == "list":
        await list_projects(registry, presenter)
        return EXIT_OK

    if command == "open":
        await open_project(args.name, registry, store, presenter)
        return EXIT_OK

    require_credential(config)
    answers = answer_provider(args.assume_yes)
    flow = ModifyFlow(config, LLMGateway(config), presenter, answers, registry=registry, store=store)
    await flow.run(args.name, join_words(args.change) or None)
    return EXIT_OK


# ==================== Entry point ====================

def report_error(presenter: Presenter, console: Console, error: BaseException, debug: bool) -> None:
    if isinstance(error, MissingCredentialError):
        presenter.show_error(
            "Missing credential",
            error.message,
            hint="export ANTHROPIC_API_KEY=sk-ant-...  (or put it in ./.env)",
        )
    elif isinstance(error, ProjectNotFoundError):
        presenter.show_error("Project not found", error.message, hint="Run 'vbs list' to see registered projects.")
    elif isinstance(error, JSONExtractionError):
        console.print(f"[bold red]✗ Error:[/] {error.message}")
        console.print("[dim]Model output began with:[/]")
        console.print(error.raw_snippet or "(empty)", style="dim", markup=False, highlight=False)
    elif isinstance(error, VBSError):
        console.print(f"[bold red]✗ Error:[/] {error.message}")
    else:
        console.print(f"[bold red]✗ Error:[/] {type(error).__name__}: {error}")

    if debug:
        if isinstance(error, VBSError) and error.details:
            console.print(json.dumps(error.details, indent=2, default=str),
                          style="dim", markup=False, highlight=False)
        console.print("".join(traceback.format_exception(type(error), error, error.__traceback__)),
                      style="dim", markup=False, highlight=False)
    else:
        console.print("[dim]Run with --debug for the full stack trace.[/]")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    argv = normalize_argv(list(sys.argv[1:] if argv is None else argv))
    command = argv[0] if argv and argv[0] in COMMANDS else None

    if command:
        args = create_command_parser(command).parse_args(argv[1:])
        args.assume_yes = getattr(args, "assume_yes", False)
    else:
        args = create_parser().parse_args(argv)

    console = Console()
    presenter = ConsolePresenter(console)
    config: Optional[VBSConfig] = None
    debug = args.debug

    try:
        config = VBSConfig.load_default()
        config.debug = debug = config.debug or args.debug
        setup_logging(config.log_file, config.log_level, config.debug)

        if command:
            return asyncio.run(run_command(command, args, config, presenter))

        presenter.title(__version__)
        require_credential(config)
        return asyncio.run(run_build(args, config, presenter))

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/]")
        logger.warning("Interrupted by user")
        return EXIT_INTERRUPTED
    except Exception as e:
        if config is not None:
            logger.log_error_with_context(e, command or "build")
        report_error(presenter, console, e, debug)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
