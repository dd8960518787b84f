"""Credentials and the streaming completion call."""

import logging
import time
from pathlib import Path
from typing import Iterator, List, Optional, Union

import litellm
from decouple import RepositoryEnv
from decouple import config as env_config
from litellm.exceptions import (
    APIConnectionError,
    APIError,
    APIResponseValidationError,
    AuthenticationError,
    BadRequestError,
    BudgetExceededError,
    ContentPolicyViolationError,
    ContextWindowExceededError,
    InternalServerError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
    UnprocessableEntityError,
    UnsupportedParamsError,
)
from pydantic import BaseModel, Field, SecretStr

from .config import ModelOptions
from .errors import ConfigError, TransportError
from .parsing import Message

logger = logging.getLogger(__name__)

# providers differ in which extensions they accept; drop the rest
litellm.drop_params = True
litellm.suppress_debug_info = True
logging.getLogger("LiteLLM").setLevel(logging.CRITICAL)
logging.getLogger("litellm").setLevel(logging.CRITICAL)

DEFAULT_SECRETS_FILE = Path.home() / ".sira"

FATAL_ERRORS = (
    AuthenticationError,
    PermissionDeniedError,
    NotFoundError,
    BadRequestError,
    UnsupportedParamsError,
    APIResponseValidationError,
    BudgetExceededError,
    ContentPolicyViolationError,
    ContextWindowExceededError,
)

TRANSIENT_ERRORS = (
    RateLimitError,
    Timeout,
    UnprocessableEntityError,
    APIConnectionError,
    APIError,
    ServiceUnavailableError,
    InternalServerError,
)


# ANSI colour codes for terminal output
class LC:
    RED = "\033[91m"
    GREEN = "\033[92m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    RESET = "\033[0m"


class LLMCredentials(BaseModel):
    api_key: SecretStr = Field(repr=False)
    base_url: Optional[str] = Field(default=None, repr=False)


def secrets_path() -> Path:
    return Path(env_config("SIRA_SECRETS_FILE", default=str(DEFAULT_SECRETS_FILE)))


def load_credentials(path: Optional[Union[str, Path]] = None) -> LLMCredentials:
    """Read the API key from a single-line `KEY=value` secrets file.

    The key name is not significant; the first entry is used. When the file
    does not exist, LLM_API_KEY (and LLM_API_BASE) from the environment are
    used instead.

    Raises:
        ConfigError: no secrets file and no LLM_API_KEY, or an empty file
    """
    path = Path(path) if path is not None else secrets_path()
    base_url = env_config("LLM_API_BASE", default=None)

    if path.exists():
        try:
            data = RepositoryEnv(str(path)).data
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(f"Could not read secrets file: {e}", path) from e
        if not data:
            raise ConfigError("Secrets file has no KEY=value entry", path)
        name, value = next(iter(data.items()))
        logger.debug(f"Using {name} from {path}")
        return LLMCredentials(api_key=SecretStr(value.strip()), base_url=base_url)

    api_key = env_config("LLM_API_KEY", default=None)
    if not api_key:
        raise ConfigError(
            f"No API key: create {path} containing KEY=value, or set LLM_API_KEY"
        )
    return LLMCredentials(api_key=SecretStr(api_key), base_url=base_url)


def _fragment(chunk) -> str:
    try:
        return chunk.choices[0].delta.content or ""
    except (AttributeError, IndexError):
        return ""


def _wrap(e: Exception, model_name: str) -> TransportError:
    if isinstance(e, FATAL_ERRORS):
        logger.error(f"Fatal API error for model {model_name}: {e}")
    elif isinstance(e, TRANSIENT_ERRORS):
        logger.warning(f"API error for model {model_name}: {e}")
    else:
        logger.warning(f"Unknown error calling model {model_name}: {e}")
    return TransportError(e, model_name)


def stream_completion(
    messages: List[Message],
    options: ModelOptions,
    credentials: LLMCredentials,
) -> Iterator[str]:
    """Stream a chat completion, yielding content fragments in order.

    Args:
        messages: conversation to send, in document order
        options: model name plus sampling options and provider extensions
        credentials: API key (and optional base URL) for this call

    Raises:
        TransportError: the request or the stream failed
    """
    kwargs = options.completion_kwargs()
    model_name = kwargs.pop("model")
    if credentials.base_url:
        kwargs["api_base"] = credentials.base_url

    payload = [m.to_dict() for m in messages]
    logger.debug(f"{LC.BLUE}Messages: {payload}{LC.RESET}")
    logger.info(f"{LC.CYAN}LLM CALL START ({model_name}, {len(payload)} messages){LC.RESET}")
    start_time = time.monotonic()

    try:
        response = litellm.completion(
            model=model_name,
            messages=payload,
            stream=True,
            api_key=credentials.api_key.get_secret_value(),
            **kwargs,
        )
    except Exception as e:
        raise _wrap(e, model_name) from e

    count = 0
    try:
        for chunk in response:
            fragment = _fragment(chunk)
            if fragment:
                count += 1
                yield fragment
    except Exception as e:
        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.warning(f"{LC.RED}LLM STREAM FAILED [{elapsed_ms:.0f}ms]: {e}{LC.RESET}")
        raise _wrap(e, model_name) from e

    elapsed_ms = (time.monotonic() - start_time) * 1000
    logger.info(f"{LC.GREEN}LLM CALL DONE [{elapsed_ms:.0f}ms] {count} fragments{LC.RESET}")
