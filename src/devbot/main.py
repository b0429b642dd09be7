"""CLI entrypoint for devbot."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from devbot import __version__
from devbot.controllers import (
    DEFAULT_CHAT_ID,
    DEFAULT_USER_ID,
    AskCommand,
    BotCliController,
    ChatCommand,
    SessionsCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = BotCliController()


@click.group()
@click.version_option(version=__version__, prog_name="devbot")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="YAML config file. Values in the file win over `DEVBOT_*` env vars.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Root logger level.",
)
@click.pass_context
def devbot(ctx: click.Context, config_path: Path | None, log_level: str) -> None:
    """Relay chat messages to a coding-agent CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@devbot.command("chat")
@click.option("--chat-id", default=DEFAULT_CHAT_ID, show_default=True, help="Conversation key.")
@click.option("--user-id", default=DEFAULT_USER_ID, show_default=True, help="Sender identity.")
@click.pass_context
def chat(ctx: click.Context, chat_id: str, user_id: str) -> None:
    """Interactive session: every stdin line is a prompt or a `/command`."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.run_chat(
                ChatCommand(
                    config_path=ctx.obj["config_path"],
                    chat_id=chat_id,
                    user_id=user_id,
                ),
                click.get_text_stream("stdin"),
            ),
        ),
    )


@devbot.command("ask")
@click.argument("prompt")
@click.option("--chat-id", default=DEFAULT_CHAT_ID, show_default=True, help="Conversation key.")
@click.option(
    "--work-dir",
    type=click.Path(path_type=Path, exists=True, file_okay=False),
    default=None,
    help="Directory the agent runs in.",
)
@click.option("--yolo", is_flag=True, default=False, help="Skip permission prompts.")
@click.pass_context
def ask(
    ctx: click.Context,
    prompt: str,
    chat_id: str,
    work_dir: Path | None,
    yolo: bool,
) -> None:
    """Run one prompt and print the agent's answer."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.ask(
                AskCommand(
                    prompt=prompt,
                    config_path=ctx.obj["config_path"],
                    chat_id=chat_id,
                    work_dir=work_dir,
                    yolo=yolo,
                ),
            ),
        ),
    )


@devbot.command("sessions")
@click.option("--chat-id", default=None, help="Only show this conversation.")
@click.pass_context
def sessions(ctx: click.Context, chat_id: str | None) -> None:
    """List stored conversation sessions."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.list_sessions(
                SessionsCommand(config_path=ctx.obj["config_path"], chat_id=chat_id),
            ),
        ),
    )


def _run(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    devbot()
