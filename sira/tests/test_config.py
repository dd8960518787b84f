"""Tests for params.yaml loading and validation."""

import pytest

from sira.config import (ConversationConfig, ModelOptions, default_config_text,
                         load_config, parse_config)
from sira.errors import ConfigError, ConversationIOError
from sira.markers import BRACKET_SYNTAX, HASH_SYNTAX


def write(tmp_path, text):
    path = tmp_path / "params.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_full_config(tmp_path):
    path = write(
        tmp_path,
        """
syntax: bracket
prime_user: false
history_window: 5
params:
  topic: rainbows
  count: 3
model:
  model: gpt-4o-mini
  max_tokens: 4000
  temperature: 0.7
  top_p: 1
""",
    )

    cfg = load_config(path)

    assert cfg.marker_syntax is BRACKET_SYNTAX
    assert cfg.prime_user is False
    assert cfg.history_window == 5
    assert cfg.params == {"topic": "rainbows", "count": 3}
    assert cfg.model.model == "gpt-4o-mini"
    assert cfg.model.max_tokens == 4000
    assert cfg.model.temperature == pytest.approx(0.7)


def test_defaults(tmp_path):
    cfg = load_config(write(tmp_path, "model:\n  model: mistral/mistral-small\n"))

    assert cfg.marker_syntax is HASH_SYNTAX
    assert cfg.prime_user is True
    assert cfg.history_window is None
    assert cfg.params == {}
    assert cfg.conversation_file == "conversation.md"


def test_empty_params_section(tmp_path):
    cfg = load_config(write(tmp_path, "params:\n  # nothing yet\nmodel:\n  model: m\n"))
    assert cfg.params == {}


def test_extension_options_pass_through():
    options = ModelOptions(
        model="mistral/mistral-small",
        temperature=0.2,
        top_p=1.0,
        random_seed=0,
        safe_mode=True,
    )
    kwargs = options.completion_kwargs()

    assert kwargs == {
        "model": "mistral/mistral-small",
        "temperature": 0.2,
        "top_p": 1.0,
        "random_seed": 0,
        "safe_mode": True,
    }


def test_unset_options_dropped():
    assert ModelOptions(model="m").completion_kwargs() == {"model": "m"}


@pytest.mark.parametrize("key", ["stream", "messages", "api_key", "api_base"])
def test_reserved_option_keys_rejected(key):
    """Options set by the completion call itself cannot come from params.yaml"""
    with pytest.raises(ConfigError) as exc_info:
        parse_config({"model": {"model": "m", key: False}})
    assert key in str(exc_info.value)


def test_reserved_option_key_in_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, "model:\n  model: m\n  stream: false\n"))


def test_missing_model_is_config_error(tmp_path):
    with pytest.raises(ConfigError) as exc_info:
        load_config(write(tmp_path, "model:\n  temperature: 0.5\n"))
    assert "params.yaml" in str(exc_info.value)


def test_missing_model_section(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, "params:\n  a: b\n"))


def test_out_of_range_temperature(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, "model:\n  model: m\n  temperature: 7\n"))


def test_unknown_top_level_key(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, "modle:\n  model: m\n"))


def test_unknown_syntax(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, "syntax: xml\nmodel:\n  model: m\n"))


def test_custom_syntax_mapping(tmp_path):
    cfg = load_config(
        write(
            tmp_path,
            """
syntax:
  system: "SYSTEM:"
  assistant: "AI:"
  user: "ME:"
  comment: "%%"
model:
  model: m
""",
        )
    )
    assert cfg.marker_syntax.assistant == "AI:"


def test_malformed_yaml(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, "model: [unclosed\n"))


def test_not_a_mapping(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, "- a\n- b\n"))


def test_empty_document(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, "# only a comment\n"))


def test_missing_file(tmp_path):
    with pytest.raises(ConversationIOError):
        load_config(tmp_path / "params.yaml")


def test_parse_config_from_mapping():
    cfg = parse_config({"model": {"model": "m"}, "params": {"n": 1}})
    assert isinstance(cfg, ConversationConfig)
    assert cfg.params == {"n": 1}


@pytest.mark.parametrize("syntax", ["hash", "bracket"])
def test_default_config_text_loads(tmp_path, syntax):
    cfg = load_config(write(tmp_path, default_config_text(syntax, model="gpt-4o-mini")))

    assert cfg.marker_syntax.name == syntax
    assert cfg.model.model == "gpt-4o-mini"
    assert cfg.model.max_tokens == 500
    assert cfg.params == {}
    assert cfg.history_window is None
