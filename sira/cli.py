import json
import logging
from pathlib import Path
from typing import Optional

import typer
from decouple import config as env_config
from rich.console import Console

from . import __version__
from .errors import SiraError
from .llm import load_credentials
from .turn import execute_turn, init_conversation, open_conversation, prepare_messages

app = typer.Typer(help="sira: conversation files as prompt templates and chat history")

logger = logging.getLogger(__name__)

err_console = Console(stderr=True)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    )
):
    """sira: conversation files as prompt templates and chat history"""
    pass


def setup_logging(verbosity: int):
    """Set up logging based on verbosity level.

    Levels:
        0 (no -v): WARNING only
        1 (-v): WARNING only
        2 (-vv): INFO logs
        3+ (-vvv): DEBUG logs
    """
    if verbosity >= 3:
        level = logging.DEBUG
    elif verbosity >= 2:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )


def _fail(e: Exception):
    # markup=False: error text may contain [system]-style markers
    err_console.print(f"Error: {e}", style="red", markup=False, highlight=False, soft_wrap=True)
    raise typer.Exit(1)


def _echo_fragment(fragment: str) -> None:
    typer.echo(fragment, nl=False)


@app.command()
def init(
    directory: Path = typer.Argument(..., help="Conversation directory to create"),
    syntax: str = typer.Option(
        "hash", "--syntax", "-s", help='Marker syntax: "hash" (# user) or "bracket" ([user])'
    ),
    system: str = typer.Option(
        "", "--system", help="Initial system prompt for the conversation file"
    ),
    model_name: Optional[str] = typer.Option(
        env_config("SIRA_DEFAULT_MODEL", default=None),
        "--model",
        help="Model written to params.yaml (overrides SIRA_DEFAULT_MODEL env var)",
    ),
):
    """Create a conversation directory with params.yaml and a seeded conversation file.

    Examples:
        sira init haiku
        sira init haiku --syntax bracket --system "You write haiku."
    """
    try:
        store = init_conversation(directory, syntax=syntax, system_prompt=system, model=model_name)
    except SiraError as e:
        _fail(e)
    typer.echo(f"Created {store.path}")


@app.command()
def run(
    path: Path = typer.Argument(..., help="Conversation directory or conversation file"),
    verbose: int = typer.Option(
        0,
        "-v",
        "--verbose",
        count=True,
        help="-vv: info logs, -vvv: debug",
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print the messages that would be sent and stop"
    ),
    secrets_file: Optional[Path] = typer.Option(
        None, "--secrets", help="KEY=value secrets file (default ~/.sira)"
    ),
):
    """
    Run one turn: send the conversation, stream the reply, append it to the file.

    Examples:
        sira run haiku
        sira run haiku/conversation.md -vv
        sira run haiku --dry-run
    """
    setup_logging(verbose)

    try:
        if dry_run:
            store, cfg = open_conversation(path)
            for message in prepare_messages(store, cfg):
                typer.echo(f"[{message.role.value}] {message.content}")
            return

        credentials = load_credentials(secrets_file)
        execute_turn(path, credentials, echo=_echo_fragment)
        typer.echo()
    except SiraError as e:
        typer.echo()
        _fail(e)


@app.command()
def messages(
    path: Path = typer.Argument(..., help="Conversation directory or conversation file"),
    as_json: bool = typer.Option(False, "--json", help="Print messages as JSON"),
):
    """Print the messages parsed from a conversation (comments dropped, parameters filled in)."""
    try:
        store, cfg = open_conversation(path)
        parsed = store.parse(cfg.params).messages
    except SiraError as e:
        _fail(e)

    if as_json:
        typer.echo(json.dumps([m.to_dict() for m in parsed], indent=2, ensure_ascii=False))
        return

    console = Console()
    for message in parsed:
        console.rule(message.role.value, style="cyan")
        console.print(message.content, markup=False, highlight=False, soft_wrap=True)


if __name__ == "__main__":
    app()
