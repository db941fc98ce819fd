"""
Tests for the command line interface.
"""

import json
import sys
from types import SimpleNamespace

import numpy as np
import pytest
from scipy.io import wavfile

from reading_assessor import main as cli
from reading_assessor.errors import error_handler
from reading_assessor.models import AggregateResult
from reading_assessor.orchestrator import AssessmentOrchestrator
from reading_assessor.providers.base import TranscriptionProvider
from reading_assessor.session import SessionState, SessionTracker


def json_from(output):
    return json.loads(output[output.index("{"):output.rindex("}") + 1])


class EchoProvider(TranscriptionProvider):
    """Recognizes every card perfectly."""

    name = "whisper"

    def recognize(self, sentence, token, recording):
        return AggregateResult(transcript=sentence, duration_ms=2500.0,
                               word_count=len(sentence.split()), provider=self.name)


class SpeakingProvider(EchoProvider):
    """Pushes a short burst of audio through the microphone before answering."""

    def recognize(self, sentence, token, recording):
        recording.source.push(np.full(1600, 0.1))
        return super().recognize(sentence, token, recording)


class TestScoreCommand:
    """Test offline scoring from the command line."""

    def test_json_output(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, 'argv', [
            'reading-assessor', 'score', 'The cat sat on the mat.', 'the cat sat', '--json'
        ])
        assert cli.main() == 0
        payload = json_from(capsys.readouterr().out)
        assert payload['completeness_score'] == 50
        assert [w['error_type'] for w in payload['word_feedback'][3:]] == ['Omitted'] * 3

    def test_table_output(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, 'argv', [
            'reading-assessor', 'score', 'The cat sat on the mat.', 'the cat sat on the mat'
        ])
        assert cli.main() == 0
        out = capsys.readouterr().out
        assert "Average score:" in out
        assert "180 wpm" in out

    def test_filipino(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, 'argv', [
            'reading-assessor', '--language', 'fil', 'score', 'Malakas ang ulan.', 'malakas ang ulan', '--json'
        ])
        assert cli.main() == 0
        assert json_from(capsys.readouterr().out)['correctness'] == 100

    def test_unknown_language(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, 'argv', ['reading-assessor', '--language', 'klingon', 'score', 'a', 'a'])
        assert cli.main() == 1
        assert "Unknown language" in capsys.readouterr().out

    def test_no_command(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, 'argv', ['reading-assessor'])
        assert cli.main() == 1
        assert "score" in capsys.readouterr().out

    def test_clean_run_prints_no_issues(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, 'argv', ['reading-assessor', 'score', 'The cat.', 'the cat'])
        assert cli.main() == 0
        assert "ISSUES DETECTED" not in capsys.readouterr().out

    def test_issues_printed_on_exit(self, monkeypatch, capsys):
        def _failing_save(args):
            error_handler.add_error(error_handler.handle_persistence_error(RuntimeError("HTTP 500")))
            error_handler.add_error(error_handler.handle_audio_save_error(OSError("read-only file system")))
            return 1

        monkeypatch.setattr(sys, 'argv', ['reading-assessor', 'score', 'a', 'a'])
        monkeypatch.setattr(cli, 'run_score', _failing_save)
        assert cli.main() == 1
        out = capsys.readouterr().out
        assert "ISSUES DETECTED" in out
        assert "Warnings: 1" in out
        assert "Errors: 1" in out
        assert "[PERSIST_002] Failed to save remedial session" in out
        assert "Suggestion: Check that the audio directory is writable" in out


class TestSessionCommand:
    """Test the interactive session loop with scripted input."""

    @pytest.fixture
    def orchestrator(self, cards, context, lock_store, json_sink, fake_source):
        tracker = SessionTracker(cards, context, lock_store=lock_store, sink=json_sink)
        return AssessmentOrchestrator(tracker, EchoProvider(), source_factory=lambda: fake_source)

    def script(self, monkeypatch, orchestrator, answers):
        replies = iter(answers)
        monkeypatch.setattr(cli, 'build_orchestrator', lambda args: orchestrator)
        monkeypatch.setattr('builtins.input', lambda prompt="": next(replies))

    def test_full_session(self, monkeypatch, capsys, orchestrator):
        self.script(monkeypatch, orchestrator, ["r", "n", "r", "n", "r", "n", "Reads clearly."])
        assert cli.run_session(SimpleNamespace(student_id="s1", level=None)) == 0
        out = capsys.readouterr().out
        assert "Session summary" in out
        assert "Session saved (completed=True)" in out
        assert orchestrator.tracker.state is SessionState.SAVED

    def test_next_without_recording(self, monkeypatch, capsys, orchestrator):
        self.script(monkeypatch, orchestrator, ["n", "q"])
        assert cli.run_session(SimpleNamespace(student_id="s1", level=None)) == 0
        out = capsys.readouterr().out
        assert "Please record a score" in out
        assert "closed without saving" in out

    def test_interrupted(self, monkeypatch, capsys, orchestrator):
        def _interrupt(prompt=""):
            raise KeyboardInterrupt

        monkeypatch.setattr(cli, 'build_orchestrator', lambda args: orchestrator)
        monkeypatch.setattr('builtins.input', _interrupt)
        assert cli.run_session(SimpleNamespace(student_id="s1", level=None)) == 130
        assert orchestrator.tracker.state is SessionState.IDLE

    def test_blocked_student(self, monkeypatch, capsys, orchestrator, json_sink, context, make_slide):
        json_sink.save_session_slides("s1", context, [make_slide(0)], "Done", True)
        self.script(monkeypatch, orchestrator, [])
        assert cli.run_session(SimpleNamespace(student_id="s1", level=None)) == 1
        assert "Blocked" in capsys.readouterr().out

    def test_save_audio_writes_scored_attempts(self, monkeypatch, tmp_path, cards, context, lock_store,
                                               json_sink, fake_source):
        tracker = SessionTracker(cards, context, lock_store=lock_store, sink=json_sink)
        orchestrator = AssessmentOrchestrator(tracker, SpeakingProvider(), source_factory=lambda: fake_source,
                                              audio_dir=tmp_path / "wav")
        self.script(monkeypatch, orchestrator, ["r", "r", "q"])
        assert cli.run_session(SimpleNamespace(student_id="s1", level=None)) == 0

        saved = sorted(path.name for path in (tmp_path / "wav").iterdir())
        assert saved == ["s1_card1_attempt1.wav", "s1_card1_attempt2.wav"]
        rate, samples = wavfile.read(tmp_path / "wav" / saved[0])
        assert rate == 16000
        assert samples.size == 1600

    def test_save_audio_option_reaches_orchestrator(self, monkeypatch, tmp_path, orchestrator):
        seen = {}

        def _build(args):
            seen['save_audio'] = args.save_audio
            return orchestrator

        monkeypatch.setattr(sys, 'argv', ['reading-assessor', 'session', 's1', '--save-audio', str(tmp_path)])
        monkeypatch.setattr(cli, 'build_orchestrator', _build)
        monkeypatch.setattr('builtins.input', lambda prompt="": "q")
        assert cli.main() == 0
        assert seen['save_audio'] == str(tmp_path)
