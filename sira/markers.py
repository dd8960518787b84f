"""Role markers and the marker syntaxes a conversation file can be written in.

A syntax is a small table: one literal per role plus a comment sentinel.
Which table a conversation uses is a configuration choice, so the tokenizer
never branches on concrete marker text.
"""

import logging
from enum import Enum
from typing import Dict, Mapping, Union

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from .errors import ConfigError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Closed set of conversation roles; the value is the wire name."""

    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"


class RoleMarker(BaseModel):
    """A literal that introduces a section of the given role."""

    role: Role
    literal: str

    model_config = ConfigDict(frozen=True)

    def __len__(self) -> int:
        return len(self.literal)


class MarkerSyntax(BaseModel):
    """Marker literals plus comment sentinel for one conversation format."""

    name: str = "custom"
    system: str
    assistant: str
    user: str
    comment: str

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_literals(self):
        literals = {
            "system": self.system,
            "assistant": self.assistant,
            "user": self.user,
            "comment": self.comment,
        }
        for field, literal in literals.items():
            if not literal:
                raise ValueError(f"{field} marker must not be empty")

        role_literals = [self.system, self.assistant, self.user]
        for i, a in enumerate(role_literals):
            for j, b in enumerate(role_literals):
                if i != j and b.startswith(a):
                    raise ValueError(
                        f"role markers must not prefix each other: {a!r} / {b!r}"
                    )

        # otherwise every marker line would be dropped as a comment
        for literal in role_literals:
            if literal.startswith(self.comment):
                raise ValueError(
                    f"comment sentinel {self.comment!r} must not prefix role marker {literal!r}"
                )
        return self

    def marker(self, role: Role) -> RoleMarker:
        """Return the marker for `role`."""
        return self.markers[role]

    @property
    def markers(self) -> Dict[Role, RoleMarker]:
        # exhaustive over Role; a missing key is a defect, not user error
        table = {
            Role.SYSTEM: RoleMarker(role=Role.SYSTEM, literal=self.system),
            Role.ASSISTANT: RoleMarker(role=Role.ASSISTANT, literal=self.assistant),
            Role.USER: RoleMarker(role=Role.USER, literal=self.user),
        }
        assert set(table) == set(Role), "marker table does not cover every role"
        return table

    def describe(self) -> str:
        return (
            f"{self.name}: {self.system!r} / {self.assistant!r} / {self.user!r}, "
            f"comments start with {self.comment!r}"
        )


HASH_SYNTAX = MarkerSyntax(
    name="hash",
    system="# system",
    assistant="# assistant",
    user="# user",
    comment=">>>",
)

BRACKET_SYNTAX = MarkerSyntax(
    name="bracket",
    system="[system]",
    assistant="[assistant]",
    user="[user]",
    comment="///",
)

SYNTAXES: Dict[str, MarkerSyntax] = {
    HASH_SYNTAX.name: HASH_SYNTAX,
    BRACKET_SYNTAX.name: BRACKET_SYNTAX,
}

DEFAULT_SYNTAX = HASH_SYNTAX


def get_syntax(spec: Union[str, Mapping[str, str], MarkerSyntax, None]) -> MarkerSyntax:
    """Resolve a syntax name, mapping of literals, or MarkerSyntax.

    Args:
        spec: "hash", "bracket", a mapping with system/assistant/user/comment
            keys, an existing MarkerSyntax, or None for the default.

    Raises:
        ConfigError: unknown name or invalid literal set
    """
    if spec is None:
        return DEFAULT_SYNTAX
    if isinstance(spec, MarkerSyntax):
        return spec
    if isinstance(spec, str):
        try:
            return SYNTAXES[spec.lower()]
        except KeyError:
            raise ConfigError(
                f"Unknown marker syntax {spec!r} (choose from {', '.join(SYNTAXES)})"
            ) from None
    if isinstance(spec, Mapping):
        try:
            syntax = MarkerSyntax(**dict(spec))
        except ValidationError as e:
            raise ConfigError(f"Invalid marker syntax: {e}") from e
        logger.debug(f"Using custom marker syntax {syntax.describe()}")
        return syntax
    raise ConfigError(f"Marker syntax must be a name or a mapping, got {type(spec).__name__}")
