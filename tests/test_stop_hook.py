"""Tests for the Claude Code stop hook and transcript reading."""

import io
import json
import pytest
from pathlib import Path

from ralf.cli import main
from ralf.commands.stop_hook import decide
from ralf.lib.transcript import last_assistant_text
from ralf.runner.loop_state import LoopState, LoopStateStore


def _assistant(text: str) -> str:
    return json.dumps({"type": "assistant",
                       "message": {"role": "assistant", "content": [{"type": "text", "text": text}]}})


def _user(text: str) -> str:
    return json.dumps({"type": "user", "message": {"role": "user", "content": text}})


def _transcript(path: Path, *lines: str) -> Path:
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def project(tmp_path):
    (tmp_path / "prd.json").write_text(json.dumps({"userStories": [
        {"id": "US-1", "title": "One", "priority": 1, "passes": True},
        {"id": "US-2", "title": "Two", "priority": 2, "passes": False},
    ]}))
    return tmp_path


def _start(project: Path, **kwargs) -> LoopStateStore:
    store = LoopStateStore(project / ".claude" / "ralf-state.json")
    store.start(LoopState(prd_path="prd.json", prompt="Work on the next story", **kwargs))
    return store


class TestLastAssistantText:
    def test_takes_last_assistant_message(self, tmp_path):
        path = _transcript(tmp_path / "t.jsonl", _assistant("first"), _user("ok"), _assistant("second"))
        assert last_assistant_text(path) == "second"

    def test_joins_text_blocks_and_skips_tool_use(self, tmp_path):
        line = json.dumps({"message": {"role": "assistant", "content": [
            {"type": "text", "text": "part one"},
            {"type": "tool_use", "name": "Bash", "input": {}},
            {"type": "text", "text": "part two"},
        ]}})
        assert last_assistant_text(_transcript(tmp_path / "t.jsonl", line)) == "part one\npart two"

    def test_skips_malformed_lines(self, tmp_path):
        path = _transcript(tmp_path / "t.jsonl", _assistant("kept"), "{not json")
        assert last_assistant_text(path) == "kept"

    def test_no_assistant_message(self, tmp_path):
        assert last_assistant_text(_transcript(tmp_path / "t.jsonl", _user("hi"))) == ""


class TestDecide:
    def test_no_loop_allows_stop(self, project):
        store = LoopStateStore(project / ".claude" / "ralf-state.json")
        assert decide(store, project, {}).block is False

    def test_continues_and_ticks(self, project, tmp_path):
        store = _start(project, max_iterations=10)
        transcript = _transcript(tmp_path / "t.jsonl", _assistant("Implemented US-2 partially"))

        decision = decide(store, project, {"transcript_path": str(transcript)})

        assert decision.block is True
        assert decision.reason == "Work on the next story"
        assert decision.system_message.startswith("Ralf iteration 2 | 9 iterations remaining | To complete:")
        assert store.load().iteration == 2

    def test_unbounded_message_has_no_remaining(self, project, tmp_path):
        store = _start(project)
        transcript = _transcript(tmp_path / "t.jsonl", _assistant("working"))
        decision = decide(store, project, {"transcript_path": str(transcript)})
        assert "remaining" not in decision.system_message

    def test_promise_ends_loop(self, project, tmp_path):
        store = _start(project)
        transcript = _transcript(tmp_path / "t.jsonl", _assistant("Done <promise>COMPLETE</promise>"))
        decision = decide(store, project, {"transcript_path": str(transcript)})
        assert decision.block is False
        assert "Detected <promise>COMPLETE</promise>" in decision.message
        assert not store.exists()

    def test_all_passing_ends_loop(self, project, tmp_path):
        prd = json.loads((project / "prd.json").read_text())
        prd["userStories"][1]["passes"] = True
        (project / "prd.json").write_text(json.dumps(prd))
        store = _start(project)
        transcript = _transcript(tmp_path / "t.jsonl", _assistant("finished US-2"))

        decision = decide(store, project, {"transcript_path": str(transcript)})
        assert decision.block is False
        assert "All stories in prd.json are passing" in decision.message
        assert not store.exists()

    def test_max_iterations_ends_loop(self, project, tmp_path):
        store = _start(project, max_iterations=1)
        decision = decide(store, project, {"transcript_path": str(tmp_path / "t.jsonl")})
        assert decision.block is False
        assert "Max iterations (1) reached" in decision.message
        assert not store.exists()

    def test_missing_transcript_clears_state(self, project, tmp_path):
        store = _start(project)
        decision = decide(store, project, {"transcript_path": str(tmp_path / "missing.jsonl")})
        assert decision.block is False
        assert not store.exists()


class TestStopHookCommand:
    def test_prints_block_decision(self, project, tmp_path, monkeypatch, capsys):
        _start(project)
        transcript = _transcript(tmp_path / "t.jsonl", _assistant("still working"))
        monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps({"transcript_path": str(transcript)})))

        assert main(["--project-dir", str(project), "stop-hook"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["decision"] == "block"
        assert output["reason"] == "Work on the next story"

    def test_silent_without_loop(self, project, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO("{}"))
        assert main(["--project-dir", str(project), "stop-hook"]) == 0
        assert capsys.readouterr().out == ""
