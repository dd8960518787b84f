"""Per-conversation options, read from `params.yaml`.

The document holds the template parameters, the model options passed to the
completion service, and the marker syntax the conversation file uses.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from decouple import config as env_config
from pydantic import (BaseModel, ConfigDict, Field, ValidationError,
                      field_validator, model_validator)

from .errors import ConfigError, ConversationIOError
from .markers import MarkerSyntax, get_syntax

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "params.yaml"
CONVERSATION_FILENAME = "conversation.md"

DEFAULT_MODEL = env_config("SIRA_DEFAULT_MODEL", default="gpt-4o-mini")

# passed explicitly by stream_completion
RESERVED_OPTION_KEYS = frozenset({"messages", "stream", "api_key", "api_base"})


class ModelOptions(BaseModel):
    """Options for one completion call.

    Only the common options are declared. Provider-specific extensions
    (top_p, seed, random_seed, safe_mode, ...) are accepted as extra fields
    and passed through unchanged.
    """

    model: str = Field(min_length=1)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="after")
    def _no_reserved_keys(self):
        clashes = sorted(RESERVED_OPTION_KEYS & set(self.model_extra or {}))
        if clashes:
            raise ValueError(
                f"option(s) {', '.join(clashes)} are set by sira and cannot be configured"
            )
        return self

    def completion_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for the completion call, unset values dropped."""
        return {k: v for k, v in self.model_dump().items() if v is not None}


class ConversationConfig(BaseModel):
    """Everything `params.yaml` can contain."""

    syntax: Union[str, Dict[str, str]] = "hash"
    prime_user: bool = True
    history_window: Optional[int] = Field(default=None, gt=0)
    conversation_file: str = CONVERSATION_FILENAME
    params: Dict[str, Any] = Field(default_factory=dict)
    model: ModelOptions

    model_config = ConfigDict(extra="forbid")

    @field_validator("params", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        # `params:` with only comments beneath it loads as None
        return {} if v is None else v

    @property
    def marker_syntax(self) -> MarkerSyntax:
        return get_syntax(self.syntax)


def parse_config(data: Any, source: Optional[Union[str, Path]] = None) -> ConversationConfig:
    """Validate an already-loaded options mapping.

    Raises:
        ConfigError: not a mapping, failed validation, or invalid syntax
    """
    if not isinstance(data, Mapping):
        raise ConfigError(
            f"Options document must be a mapping, got {type(data).__name__}", source
        )
    try:
        cfg = ConversationConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid options: {e}", source) from e
    # resolve eagerly so a bad syntax fails here, not mid-turn
    cfg.marker_syntax
    return cfg


def load_config(path: Union[str, Path]) -> ConversationConfig:
    """Read and validate a `params.yaml` file.

    Raises:
        ConversationIOError: the file is missing or unreadable
        ConfigError: the YAML is malformed or the options are incomplete
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConversationIOError(f"{path.name} not found", path) from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConversationIOError(f"Could not read {path.name}: {e}", path) from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {path.name}: {e}", path) from e

    if data is None:
        raise ConfigError(f"{path.name} is empty", path)

    cfg = parse_config(data, path)
    logger.debug(f"Loaded options from {path}: model={cfg.model.model}")
    return cfg


def default_config_text(syntax: str = "hash", model: Optional[str] = None) -> str:
    """Text of the `params.yaml` written by `sira init`."""
    return f"""\
# marker syntax of {CONVERSATION_FILENAME}: "hash" or "bracket"
syntax: {syntax}

# end each reply with an empty user section, ready for the next turn
prime_user: true

# send only the last N messages (plus a leading system message); null sends all
history_window: null

# template parameters, e.g. topic: rainbows  (used as {{topic}})
params: {{}}

model:
  model: {model or DEFAULT_MODEL}
  temperature: 0.7
  max_tokens: 500
"""
