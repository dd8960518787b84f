"""sira -- plain-text conversation files as prompt templates and chat history."""

import logging

# Version - reads from package metadata (set in pyproject.toml)
try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("sira")
except PackageNotFoundError:
    __version__ = "0.0.0+dev"

logger = logging.getLogger(__name__)

from .config import (ConversationConfig, ModelOptions, default_config_text,
                     load_config, parse_config)
from .conversation import ConversationStore, format_reply
from .errors import (ConfigError, ConversationIOError, IntegrityError,
                     ParameterError, ParameterTypeError, SiraError,
                     TransportError)
from .llm import LLMCredentials, load_credentials, stream_completion
from .markers import (BRACKET_SYNTAX, DEFAULT_SYNTAX, HASH_SYNTAX, MarkerSyntax,
                      Role, RoleMarker, get_syntax)
from .parsing import (Message, Template, Token, filter_comments, parse_template,
                      segment, substitute_parameters, tokenize)
from .turn import (collect_reply, execute_turn, init_conversation,
                   open_conversation, prepare_messages, trim_history)

__all__ = [
    "__version__",
    "BRACKET_SYNTAX",
    "ConfigError",
    "ConversationConfig",
    "ConversationIOError",
    "ConversationStore",
    "DEFAULT_SYNTAX",
    "HASH_SYNTAX",
    "IntegrityError",
    "LLMCredentials",
    "MarkerSyntax",
    "Message",
    "ModelOptions",
    "ParameterError",
    "ParameterTypeError",
    "Role",
    "RoleMarker",
    "SiraError",
    "Template",
    "Token",
    "TransportError",
    "collect_reply",
    "default_config_text",
    "execute_turn",
    "filter_comments",
    "format_reply",
    "get_syntax",
    "init_conversation",
    "load_config",
    "load_credentials",
    "open_conversation",
    "parse_config",
    "parse_template",
    "prepare_messages",
    "segment",
    "stream_completion",
    "substitute_parameters",
    "tokenize",
    "trim_history",
]
