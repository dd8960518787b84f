"""Turn conversation text into role-tagged messages.

Processing happens in a fixed order:

1. comment lines are dropped (`filter_comments`)
2. `{name}` placeholders are replaced (`substitute_parameters`)
3. role markers are located (`tokenize`)
4. the text between markers becomes message content (`segment`)

`parse_template` runs all four and returns a `Template`.

Offsets are code-point indices into the Python string, and slicing uses the
same indices, so multi-byte UTF-8 content is never split.

Substitution runs before tokenization. A parameter value that contains a
marker literal therefore starts a new section; parameter values are trusted
input.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict

from .errors import ParameterError, ParameterTypeError
from .markers import DEFAULT_SYNTAX, MarkerSyntax, Role, RoleMarker

logger = logging.getLogger(__name__)

ParameterValue = Union[str, int]
ParameterSet = Mapping[str, ParameterValue]


class Message(BaseModel):
    """One role-tagged unit of conversation content."""

    role: Role
    content: str

    model_config = ConfigDict(frozen=True)

    def to_dict(self) -> dict:
        """Wire format: {"role": ..., "content": ...}."""
        return {"role": self.role.value, "content": self.content}


class Token(BaseModel):
    """A marker occurrence at `offset` in the filtered, substituted text."""

    marker: RoleMarker
    offset: int

    model_config = ConfigDict(frozen=True)

    @property
    def end(self) -> int:
        return self.offset + len(self.marker)

    @property
    def role(self) -> Role:
        return self.marker.role


def filter_comments(text: str, syntax: MarkerSyntax = DEFAULT_SYNTAX) -> str:
    """Drop every line starting with the comment sentinel."""
    lines = text.split("\n")
    kept = [line for line in lines if not line.startswith(syntax.comment)]
    if len(kept) != len(lines):
        logger.debug(f"Dropped {len(lines) - len(kept)} comment line(s)")
    return "\n".join(kept)


def _render_value(key: str, value: Any) -> str:
    # bool is an int subclass but never a valid parameter
    if isinstance(value, bool):
        raise ParameterTypeError(key, value)
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    raise ParameterTypeError(key, value)


def substitute_parameters(text: str, params: Optional[ParameterSet] = None) -> str:
    """Replace each `{name}` placeholder with its value.

    Every supplied parameter must be used: a name whose placeholder is not
    in the text fails the whole substitution.

    Args:
        text: template text (already comment-filtered)
        params: mapping of name to str or int value

    Returns:
        The substituted text.

    Raises:
        ParameterError: a placeholder for a supplied name is missing
        ParameterTypeError: a value is neither str nor int
    """
    if not params:
        return text

    # every check runs against the original text, before anything is replaced
    replacements = {}
    for key, value in params.items():
        placeholder = "{" + key + "}"
        if placeholder not in text:
            raise ParameterError(key)
        replacements[placeholder] = _render_value(key, value)

    # one pass; substituted values are never scanned again
    pattern = re.compile(
        "|".join(re.escape(p) for p in sorted(replacements, key=len, reverse=True))
    )
    text = pattern.sub(lambda m: replacements[m.group(0)], text)
    logger.debug(f"Substituted parameters {', '.join(params)}")
    return text


def tokenize(text: str, syntax: MarkerSyntax = DEFAULT_SYNTAX) -> Iterator[Token]:
    """Yield a Token for every role marker in `text`, in offset order.

    Single pass: after a match the cursor jumps past the literal, so matches
    never overlap. A marker at the very end of the text still counts.
    """
    markers = list(syntax.markers.values())
    i = 0
    n = len(text)
    while i < n:
        for marker in markers:
            if text.startswith(marker.literal, i):
                yield Token(marker=marker, offset=i)
                i += len(marker)
                break
        else:
            i += 1


def segment(tokens: Iterable[Token], text: str) -> List[Message]:
    """Build messages from the spans between consecutive tokens.

    Text before the first marker belongs to no message. No tokens means no
    messages, which is not an error.
    """
    tokens = list(tokens)
    messages = []
    for i, token in enumerate(tokens):
        stop = tokens[i + 1].offset if i + 1 < len(tokens) else len(text)
        messages.append(
            Message(role=token.role, content=text[token.end:stop].strip())
        )
    return messages


@dataclass(frozen=True)
class Template:
    """Filtered, substituted text plus the messages derived from it.

    Messages are recomputed from `text` and `syntax` on every access.
    """

    text: str
    syntax: MarkerSyntax = DEFAULT_SYNTAX

    @property
    def messages(self) -> List[Message]:
        return segment(tokenize(self.text, self.syntax), self.text)

    def __len__(self) -> int:
        return len(self.messages)


def parse_template(
    text: str,
    params: Optional[ParameterSet] = None,
    syntax: MarkerSyntax = DEFAULT_SYNTAX,
) -> Template:
    """Filter, substitute, tokenize and segment `text`.

    Fails on the first error; no partial result is returned.

    Example:
        >>> parse_template("# user\\nhello").messages
        [Message(role=<Role.USER: 'user'>, content='hello')]
    """
    filtered = filter_comments(text, syntax)
    substituted = substitute_parameters(filtered, params)
    template = Template(text=substituted, syntax=syntax)
    logger.debug(f"Parsed {len(template)} message(s) with {syntax.name} syntax")
    return template
