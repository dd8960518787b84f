"""One conversation turn: parse, call, stream, append.

The pipeline is strictly sequential. The conversation file is read once at
the start and appended to once at the end, after the whole reply has been
received; any failure before that leaves the file as it was.
"""

import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union

from .config import (
    CONFIG_FILENAME,
    ConversationConfig,
    ModelOptions,
    default_config_text,
    load_config,
)
from .conversation import ConversationStore
from .errors import ConversationIOError
from .llm import LLMCredentials, stream_completion
from .markers import Role, get_syntax
from .parsing import Message

logger = logging.getLogger(__name__)

Echo = Callable[[str], None]
Completer = Callable[[List[Message], ModelOptions, LLMCredentials], Iterable[str]]


def _no_echo(fragment: str) -> None:
    pass


def collect_reply(fragments: Iterable[str], echo: Optional[Echo] = None) -> Message:
    """Accumulate streamed fragments into one assistant message.

    Each fragment is passed to `echo` as soon as it arrives, in order.
    """
    echo = echo or _no_echo
    parts = []
    for fragment in fragments:
        parts.append(fragment)
        echo(fragment)
    return Message(role=Role.ASSISTANT, content="".join(parts).strip())


def trim_history(messages: List[Message], window: Optional[int]) -> List[Message]:
    """Keep the last `window` messages, plus a leading system message.

    A window of None keeps everything.
    """
    if window is None or len(messages) <= window:
        return list(messages)
    kept = list(messages[-window:])
    first = messages[0]
    if first.role == Role.SYSTEM:
        kept.insert(0, first)
    logger.info(f"History window {window}: sending {len(kept)} of {len(messages)} messages")
    return kept


def open_conversation(path: Union[str, Path]) -> Tuple[ConversationStore, ConversationConfig]:
    """Load options and build the store for a conversation path.

    `path` is either a conversation directory or a conversation file; in the
    latter case the params.yaml next to it is used.

    Raises:
        ConversationIOError: the path or its params.yaml does not exist
        ConfigError: params.yaml is invalid
    """
    path = Path(path)
    if path.is_dir():
        config_path = path / CONFIG_FILENAME
        conversation_path = None
    elif path.is_file():
        config_path = path.parent / CONFIG_FILENAME
        conversation_path = path
    else:
        raise ConversationIOError("No such conversation file or directory", path)

    cfg = load_config(config_path)
    if conversation_path is None:
        conversation_path = path / cfg.conversation_file
    store = ConversationStore(
        conversation_path, syntax=cfg.marker_syntax, prime_user=cfg.prime_user
    )
    return store, cfg


def prepare_messages(store: ConversationStore, cfg: ConversationConfig) -> List[Message]:
    """Parse the conversation and apply the history window."""
    template = store.parse(cfg.params)
    return trim_history(template.messages, cfg.history_window)


def execute_turn(
    path: Union[str, Path],
    credentials: LLMCredentials,
    echo: Optional[Echo] = None,
    completer: Optional[Completer] = None,
) -> Message:
    """Run one turn against the conversation at `path` and append the reply.

    Args:
        path: conversation directory, or a conversation file inside one
        credentials: passed to the completer; never read from ambient state here
        echo: called with each fragment as it arrives
        completer: streaming completion function (defaults to litellm)

    Returns:
        The appended assistant message.
    """
    completer = completer or stream_completion
    store, cfg = open_conversation(path)
    messages = prepare_messages(store, cfg)
    logger.info(f"Sending {len(messages)} message(s) from {store.path}")

    reply = collect_reply(completer(messages, cfg.model, credentials), echo)
    store.append(reply)
    return reply


def init_conversation(
    directory: Union[str, Path],
    syntax: str = "hash",
    system_prompt: str = "",
    model: Optional[str] = None,
) -> ConversationStore:
    """Create a conversation directory with default options and a seeded file.

    Raises:
        ConversationIOError: the directory already exists or cannot be created
        ConfigError: unknown syntax name
    """
    directory = Path(directory)
    marker_syntax = get_syntax(syntax)
    try:
        directory.mkdir(parents=True)
    except FileExistsError as e:
        raise ConversationIOError("Directory already exists", directory) from e
    except OSError as e:
        raise ConversationIOError(f"Could not create directory: {e.strerror or e}", directory) from e

    config_text = default_config_text(marker_syntax.name, model)
    (directory / CONFIG_FILENAME).write_text(config_text, encoding="utf-8")

    cfg = load_config(directory / CONFIG_FILENAME)
    store = ConversationStore(
        directory / cfg.conversation_file, syntax=marker_syntax, prime_user=cfg.prime_user
    )
    store.create(system_prompt)
    return store
