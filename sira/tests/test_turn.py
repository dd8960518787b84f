"""Tests for the turn pipeline: parse, stream, accumulate, append."""

import pytest

from sira.config import default_config_text
from sira.errors import (ConfigError, ConversationIOError, ParameterError,
                         TransportError)
from sira.llm import LLMCredentials
from sira.markers import Role
from sira.parsing import Message
from sira.turn import (collect_reply, execute_turn, init_conversation,
                       open_conversation, trim_history)


def msg(role, content):
    return Message(role=Role(role), content=content)


@pytest.fixture
def credentials():
    return LLMCredentials(api_key="sk-test-1234567890")


@pytest.fixture
def conversation_dir(tmp_path):
    directory = tmp_path / "haiku"
    directory.mkdir()
    (directory / "params.yaml").write_text(
        default_config_text("hash", model="gpt-4o-mini").replace(
            "params: {}", "params:\n  topic: rainbows"
        ),
        encoding="utf-8",
    )
    (directory / "conversation.md").write_text(
        "# system\nWrite a haiku about {topic}\n\n# user\ngo\n", encoding="utf-8"
    )
    return directory


class FakeCompleter:
    """Records what it was sent and streams canned fragments."""

    def __init__(self, fragments, fail_after=None):
        self.fragments = fragments
        self.fail_after = fail_after
        self.calls = []

    def __call__(self, messages, options, credentials):
        self.calls.append((messages, options, credentials))
        for i, fragment in enumerate(self.fragments):
            if self.fail_after is not None and i == self.fail_after:
                raise TransportError(ConnectionError("dropped"), options.model)
            yield fragment


class TestCollectReply:
    def test_accumulates_and_echoes_in_order(self):
        echoed = []
        message = collect_reply(iter(["Arcs ", "of ", "colour"]), echoed.append)

        assert echoed == ["Arcs ", "of ", "colour"]
        assert message == msg("assistant", "Arcs of colour")

    def test_trims_whitespace(self):
        assert collect_reply(["\n  hi  ", "\n"]).content == "hi"

    def test_error_propagates_after_partial_echo(self):
        def fragments():
            yield "first"
            raise TransportError(RuntimeError("boom"), "m")

        echoed = []
        with pytest.raises(TransportError):
            collect_reply(fragments(), echoed.append)
        assert echoed == ["first"]


class TestTrimHistory:
    def setup_method(self):
        self.messages = [msg("system", "rules")] + [
            msg("user" if i % 2 == 0 else "assistant", f"turn {i}") for i in range(8)
        ]

    def test_none_keeps_everything(self):
        assert trim_history(self.messages, None) == self.messages

    def test_short_history_untouched(self):
        assert trim_history(self.messages, 20) == self.messages

    def test_keeps_system_plus_last_n(self):
        trimmed = trim_history(self.messages, 5)

        assert len(trimmed) == 6
        assert trimmed[0] == msg("system", "rules")
        assert [m.content for m in trimmed[1:]] == [f"turn {i}" for i in range(3, 8)]

    def test_no_system_message_to_keep(self):
        messages = self.messages[1:]
        trimmed = trim_history(messages, 3)
        assert trimmed == messages[-3:]


class TestExecuteTurn:
    def test_appends_reply(self, conversation_dir, credentials):
        completer = FakeCompleter(["Arcs of ", "colour bend"])
        echoed = []

        reply = execute_turn(conversation_dir, credentials, echo=echoed.append, completer=completer)

        assert reply == msg("assistant", "Arcs of colour bend")
        assert echoed == ["Arcs of ", "colour bend"]
        text = (conversation_dir / "conversation.md").read_text(encoding="utf-8")
        assert text == (
            "# system\nWrite a haiku about {topic}\n\n# user\ngo\n"
            "\n# assistant\nArcs of colour bend\n\n# user\n\n"
        )

    def test_sends_substituted_messages(self, conversation_dir, credentials):
        completer = FakeCompleter(["ok"])
        execute_turn(conversation_dir, credentials, completer=completer)

        messages, options, creds = completer.calls[0]
        assert [m.to_dict() for m in messages] == [
            {"role": "system", "content": "Write a haiku about rainbows"},
            {"role": "user", "content": "go"},
        ]
        assert options.model == "gpt-4o-mini"
        assert creds is credentials

    def test_accepts_conversation_file_path(self, conversation_dir, credentials):
        completer = FakeCompleter(["ok"])
        execute_turn(conversation_dir / "conversation.md", credentials, completer=completer)
        assert len(completer.calls) == 1

    def test_second_turn_includes_first_reply(self, conversation_dir, credentials):
        execute_turn(conversation_dir, credentials, completer=FakeCompleter(["first reply"]))
        with open(conversation_dir / "conversation.md", "a", encoding="utf-8") as f:
            f.write("another one\n")

        completer = FakeCompleter(["second reply"])
        execute_turn(conversation_dir, credentials, completer=completer)

        sent = [(m.role.value, m.content) for m in completer.calls[0][0]]
        assert sent[-2:] == [("assistant", "first reply"), ("user", "another one")]

    def test_transport_failure_leaves_file_untouched(self, conversation_dir, credentials):
        path = conversation_dir / "conversation.md"
        before = path.read_bytes()

        with pytest.raises(TransportError):
            execute_turn(
                conversation_dir,
                credentials,
                completer=FakeCompleter(["partial", "never"], fail_after=1),
            )

        assert path.read_bytes() == before

    def test_parameter_error_before_any_call(self, conversation_dir, credentials):
        (conversation_dir / "conversation.md").write_text("# user\nno placeholder\n")
        completer = FakeCompleter(["x"])

        with pytest.raises(ParameterError):
            execute_turn(conversation_dir, credentials, completer=completer)
        assert completer.calls == []

    def test_history_window_applied(self, conversation_dir, credentials):
        params = conversation_dir / "params.yaml"
        params.write_text(
            params.read_text(encoding="utf-8").replace(
                "history_window: null", "history_window: 1"
            ),
            encoding="utf-8",
        )
        completer = FakeCompleter(["ok"])
        execute_turn(conversation_dir, credentials, completer=completer)

        sent = [m.role.value for m in completer.calls[0][0]]
        assert sent == ["system", "user"]

    def test_missing_params_file(self, tmp_path, credentials):
        (tmp_path / "conversation.md").write_text("# user\nhi\n")
        with pytest.raises(ConversationIOError):
            execute_turn(tmp_path / "conversation.md", credentials, completer=FakeCompleter([]))

    def test_missing_path(self, tmp_path, credentials):
        with pytest.raises(ConversationIOError):
            execute_turn(tmp_path / "nowhere", credentials, completer=FakeCompleter([]))


class TestInitConversation:
    def test_creates_directory(self, tmp_path):
        store = init_conversation(tmp_path / "new", system_prompt="You write haiku.")

        assert store.path == tmp_path / "new" / "conversation.md"
        assert store.path.read_text(encoding="utf-8") == "# system\nYou write haiku.\n"
        assert (tmp_path / "new" / "params.yaml").exists()

    def test_bracket_syntax(self, tmp_path):
        init_conversation(tmp_path / "new", syntax="bracket", model="mistral/mistral-small")

        store, cfg = open_conversation(tmp_path / "new")
        assert cfg.marker_syntax.name == "bracket"
        assert cfg.model.model == "mistral/mistral-small"
        assert store.load() == "[system]\n"

    def test_refuses_existing_directory(self, conversation_dir):
        with pytest.raises(ConversationIOError):
            init_conversation(conversation_dir)

    def test_unknown_syntax_creates_nothing(self, tmp_path):
        with pytest.raises(ConfigError):
            init_conversation(tmp_path / "new", syntax="xml")
        assert not (tmp_path / "new").exists()

    def test_fresh_conversation_runs_a_turn(self, tmp_path, credentials):
        init_conversation(tmp_path / "new", system_prompt="Be brief.")
        execute_turn(tmp_path / "new", credentials, completer=FakeCompleter(["Hello."]))

        store, _ = open_conversation(tmp_path / "new")
        assert [(m.role.value, m.content) for m in store.parse().messages] == [
            ("system", "Be brief."),
            ("assistant", "Hello."),
            ("user", ""),
        ]
