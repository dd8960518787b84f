"""Conversation files: read once, append only.

A conversation file is created with a single system section and afterwards
only grows. `ConversationStore.append` never rewrites existing bytes, so an
interrupted write can lose (part of) the newest turn but never damage
earlier ones.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from .errors import ConversationIOError, IntegrityError
from .markers import DEFAULT_SYNTAX, MarkerSyntax, Role
from .parsing import Message, ParameterSet, Template, parse_template

logger = logging.getLogger(__name__)

NEWLINE = b"\n"


def format_reply(
    message: Message,
    syntax: MarkerSyntax = DEFAULT_SYNTAX,
    last_byte: bytes = NEWLINE,
    prime_user: bool = True,
) -> str:
    """Render the text appended after a file whose final byte is `last_byte`.

    One newline separates the new section when the file already ends with a
    newline, two otherwise, so there is always a blank line before the
    marker.
    """
    separator = "\n" if last_byte == NEWLINE else "\n\n"
    text = f"{separator}{syntax.marker(Role.ASSISTANT).literal}\n{message.content.strip()}"
    if prime_user:
        text += f"\n\n{syntax.marker(Role.USER).literal}\n\n"
    return text


class ConversationStore:
    """Reads a conversation file and appends assistant replies to it."""

    def __init__(
        self,
        path: Union[str, Path],
        syntax: MarkerSyntax = DEFAULT_SYNTAX,
        prime_user: bool = True,
    ):
        self.path = Path(path)
        self.syntax = syntax
        self.prime_user = prime_user

    def __repr__(self):
        return f"ConversationStore({str(self.path)!r}, syntax={self.syntax.name!r})"

    def load(self) -> str:
        """Return the full file content.

        Raises:
            ConversationIOError: missing, unreadable, or not valid UTF-8
        """
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ConversationIOError("Conversation file not found", self.path) from e
        except UnicodeDecodeError as e:
            raise ConversationIOError(
                f"Conversation file is not valid UTF-8: {e.reason}", self.path
            ) from e
        except OSError as e:
            raise ConversationIOError(
                f"Could not read conversation file: {e.strerror or e}", self.path
            ) from e

    def parse(self, params: Optional[ParameterSet] = None) -> Template:
        """Load the file and parse it with this store's syntax."""
        return parse_template(self.load(), params, self.syntax)

    def create(self, system_prompt: str = "") -> None:
        """Create the file, seeded with one system section.

        Raises:
            ConversationIOError: the file already exists or cannot be written
        """
        content = self.syntax.marker(Role.SYSTEM).literal + "\n"
        if system_prompt.strip():
            content += system_prompt.strip() + "\n"
        try:
            with open(self.path, "x", encoding="utf-8") as f:
                f.write(content)
        except FileExistsError as e:
            raise ConversationIOError(
                "Conversation file already exists", self.path
            ) from e
        except OSError as e:
            raise ConversationIOError(
                f"Could not create conversation file: {e.strerror or e}", self.path
            ) from e
        logger.info(f"Created conversation file {self.path}")

    def append(self, message: Message) -> int:
        """Append `message` as a new assistant section.

        The separator depends on the file's current last byte, which is read
        through the same handle that performs the write.

        Returns:
            Number of bytes appended.

        Raises:
            ConversationIOError: the file is missing or cannot be written
            IntegrityError: the file is empty
        """
        try:
            with open(self.path, "rb+") as f:
                size = f.seek(0, 2)
                if size == 0:
                    raise IntegrityError(self.path)
                f.seek(size - 1)
                last_byte = f.read(1)

                data = format_reply(
                    message, self.syntax, last_byte, self.prime_user
                ).encode("utf-8")
                f.seek(0, 2)
                f.write(data)
                f.flush()
        except FileNotFoundError as e:
            raise ConversationIOError("Conversation file not found", self.path) from e
        except OSError as e:
            raise ConversationIOError(
                f"Could not append to conversation file: {e.strerror or e}", self.path
            ) from e

        logger.info(f"Appended {len(data)} bytes to {self.path}")
        return len(data)
