"""Tests for ConversationState."""

import threading

from polychat.conversation import ConversationState
from polychat.llm.types import (
    Message,
    Role,
    TokenUsageDetails,
    assistant_message,
    user_message,
)


class TestSnapshot:
    def test_initial_state(self):
        state = ConversationState("sys", [user_message("a"), assistant_message("b")])
        system_prompt, history = state.snapshot()
        assert system_prompt == "sys"
        assert [m.text for m in history] == ["a", "b"]
        assert len(state) == 2

    def test_snapshot_is_independent(self):
        state = ConversationState("sys", [user_message("a")])
        _, history = state.snapshot()
        history[0].add_text("changed")
        history.append(user_message("extra"))
        _, again = state.snapshot()
        assert len(again) == 1
        assert again[0].text == "a"

    def test_initial_messages_copied(self):
        initial = [user_message("a")]
        state = ConversationState("", initial)
        initial[0].add_text("changed")
        initial.append(user_message("b"))
        assert len(state) == 1
        assert state.snapshot()[1][0].text == "a"

    def test_history_matches_snapshot(self):
        state = ConversationState("sys", [user_message("a")])
        assert state.history()[0] == "sys"
        assert state.history()[1][0].text == "a"


class TestAppend:
    def test_append_in_order(self):
        state = ConversationState()
        state.append([user_message("q"), assistant_message("a")])
        state.append([user_message("q2"), assistant_message("a2")])
        assert [m.text for m in state.snapshot()[1]] == ["q", "a", "q2", "a2"]

    def test_appended_messages_copied(self):
        state = ConversationState()
        msg = user_message("q")
        state.append([msg, assistant_message("a")])
        msg.add_text("later edit")
        assert state.snapshot()[1][0].text == "q"

    def test_usage_accumulates(self):
        state = ConversationState()
        state.append(
            [user_message("q"), assistant_message("a")],
            TokenUsageDetails(input_tokens=10, output_tokens=5, total_tokens=15),
        )
        state.append(
            [user_message("q"), assistant_message("a")],
            TokenUsageDetails(input_tokens=3, output_tokens=2, total_tokens=5),
        )
        usage = state.token_usage()
        assert usage.last_message.total_tokens == 5
        assert usage.cumulative.input_tokens == 13
        assert usage.cumulative.output_tokens == 7
        assert usage.cumulative.total_tokens == 20

    def test_zero_usage_leaves_counters(self):
        state = ConversationState()
        state.append(
            [user_message("q"), assistant_message("a")],
            TokenUsageDetails(input_tokens=10, output_tokens=5, total_tokens=15),
        )
        state.append([user_message("q"), assistant_message("a")], TokenUsageDetails())
        state.append([user_message("q"), assistant_message("a")])
        usage = state.token_usage()
        assert usage.last_message.total_tokens == 15
        assert usage.cumulative.total_tokens == 15

    def test_token_usage_returns_copies(self):
        state = ConversationState()
        state.append(
            [user_message("q"), assistant_message("a")],
            TokenUsageDetails(input_tokens=1, output_tokens=1, total_tokens=2),
        )
        state.token_usage().cumulative.total_tokens = 999
        assert state.token_usage().cumulative.total_tokens == 2


class TestConcurrency:
    def test_readers_see_whole_exchanges(self):
        state = ConversationState()
        lengths = []
        stop = threading.Event()

        def reader():
            while not stop.is_set():
                lengths.append(len(state.snapshot()[1]))

        def writer():
            for i in range(200):
                state.append(
                    [
                        user_message(f"q{i}"),
                        Message(role=Role.ASSISTANT).add_text(f"a{i}"),
                    ],
                    TokenUsageDetails(input_tokens=1, output_tokens=1),
                )

        readers = [threading.Thread(target=reader) for _ in range(3)]
        writers = [threading.Thread(target=writer) for _ in range(2)]
        for t in readers + writers:
            t.start()
        for t in writers:
            t.join()
        stop.set()
        for t in readers:
            t.join()

        assert len(state) == 800
        assert all(n % 2 == 0 for n in lengths)
