"""
Tests for the session state machine.
"""

from dataclasses import replace
from unittest.mock import Mock

import pytest
from hypothesis import given, strategies as st

from reading_assessor.errors import (
    error_handler, PersistenceError, SessionAlreadyCompletedError, SessionStateError,
    TeacherFeedbackRequiredError
)
from reading_assessor.models import ExpectedCard, SessionContext, SlideScore
from reading_assessor.session import SessionLockStore, SessionState, SessionTracker, build_lock_key
from reading_assessor.session.tracker import SCORE_REQUIRED_MESSAGE, normalize_level


@pytest.fixture
def tracker(cards, context, lock_store, json_sink):
    return SessionTracker(cards, context, lock_store=lock_store, sink=json_sink)


SENTENCES = ["The cat sat on the mat.", "A big dog ran in the park.", "We go to the store for milk."]


def plain_slide(card_index, score):
    return SlideScore(card_index, SENTENCES[card_index], score, score, score, 100, 60, 90, score, "")


def record_all(tracker, make_slide, scores=(80, 80, 80)):
    for index, score in enumerate(scores):
        tracker.record_score(make_slide(index, score, tracker.cards[index].sentence))
        assert tracker.advance()


class TestSelection:
    """Test student selection, blocking and resume."""

    def test_empty_card_set(self, context):
        with pytest.raises(ValueError):
            SessionTracker([], context)

    def test_fresh_student_starts_recording(self, tracker):
        assert tracker.select_student("s1") is SessionState.RECORDING
        assert tracker.current_index == 0
        assert tracker.scores == []

    def test_select_twice_is_invalid(self, tracker):
        tracker.select_student("s1")
        with pytest.raises(SessionStateError):
            tracker.select_student("s2")

    def test_level_mismatch_blocks(self, cards, lock_store):
        context = SessionContext(subject="english", activity="week-1", expected_level="Level 1")
        tracker = SessionTracker(cards, context, lock_store=lock_store)
        assert tracker.select_student("s1", "Level 2") is SessionState.BLOCKED
        assert tracker.message
        with pytest.raises(SessionAlreadyCompletedError):
            tracker.ensure_can_record()

    def test_levels_compare_loosely(self, cards, lock_store):
        context = SessionContext(subject="english", activity="week-1", expected_level="Level 1")
        tracker = SessionTracker(cards, context, lock_store=lock_store)
        assert tracker.select_student("s1", "  LEVEL   1 ") is SessionState.RECORDING

    def test_normalize_level(self):
        assert normalize_level(" Non  Reader ") == "non reader"
        assert normalize_level(None) == ""

    def test_completed_lock_blocks(self, tracker, lock_store, context):
        lock_store.update(build_lock_key(context.subject, context.activity, "s1"), 2, completed=True)
        assert tracker.select_student("s1") is SessionState.BLOCKED
        with pytest.raises(SessionAlreadyCompletedError):
            tracker.ensure_can_record()

    def test_completed_status_blocks(self, tracker, json_sink, context, make_slide):
        json_sink.save_session_slides("s1", context, [make_slide(0)], "Well read", True)
        statuses = tracker.refresh_statuses(["s1", "s2"])
        assert statuses["s1"].completed
        assert tracker.select_student("s1") is SessionState.BLOCKED

    def test_resumes_after_lock(self, tracker, lock_store, context):
        lock_store.update(build_lock_key(context.subject, context.activity, "s1"), 0)
        tracker.select_student("s1")
        assert tracker.current_index == 1

    def test_restores_saved_slides(self, cards, context, json_sink, tmp_path, make_slide):
        first = SessionTracker(cards, context, lock_store=SessionLockStore(tmp_path / "a"), sink=json_sink)
        first.select_student("s1")
        first.record_score(make_slide(0, 70))
        first.advance()
        first.record_score(make_slide(1, 90, cards[1].sentence))
        assert first.save_session() is False

        second = SessionTracker(cards, context, lock_store=SessionLockStore(tmp_path / "b"), sink=json_sink)
        assert second.select_student("s1") is SessionState.RECORDING
        assert second.current_index == 2
        assert [slide.pron_score for slide in second.scores] == [70, 90]
        assert second.lock_store.read(second.lock_key).last_index == 1


class TestRecordingAndNavigation:
    """Test score upserts and card navigation."""

    def test_record_requires_open_card(self, tracker, make_slide):
        with pytest.raises(SessionStateError):
            tracker.record_score(make_slide(0))

    def test_advance_without_score(self, tracker):
        tracker.select_student("s1")
        assert tracker.advance() is False
        assert tracker.message == SCORE_REQUIRED_MESSAGE
        assert tracker.current_index == 0

    def test_rerecording_replaces_score(self, tracker, make_slide):
        tracker.select_student("s1")
        tracker.record_score(make_slide(0, 40))
        tracker.record_score(make_slide(0, 95))
        assert len(tracker.scores) == 1
        assert tracker.scores[0].pron_score == 95
        assert tracker.state is SessionState.SCORED

    def test_recording_updates_lock(self, tracker, make_slide):
        tracker.select_student("s1")
        tracker.record_score(make_slide(0))
        lock = tracker.lock_store.read(tracker.lock_key)
        assert lock.last_index == 0
        assert not lock.completed

    def test_advance_past_last_card(self, tracker, make_slide):
        tracker.select_student("s1")
        record_all(tracker, make_slide)
        assert tracker.state is SessionState.SUMMARY
        assert tracker.current_index == 2

    def test_previous_blocked_when_locked(self, tracker, make_slide):
        tracker.select_student("s1")
        tracker.record_score(make_slide(0))
        tracker.advance()
        assert tracker.previous() is False
        assert tracker.current_index == 1

    def test_previous_when_unlocked(self, cards, context, make_slide):
        tracker = SessionTracker(cards, replace(context, lock_enabled=False))
        tracker.select_student("s1")
        assert tracker.previous() is False
        tracker.record_score(make_slide(0))
        tracker.advance()
        assert tracker.previous() is True
        assert tracker.current_index == 0
        assert tracker.state is SessionState.SCORED

    def test_stop_returns_to_idle(self, tracker, make_slide):
        tracker.select_student("s1")
        tracker.record_score(make_slide(0))
        tracker.stop()
        assert tracker.state is SessionState.IDLE
        assert tracker.scores == []
        assert tracker.student_id is None

    def test_score_for_another_card_rejected(self, tracker, make_slide, cards):
        tracker.select_student("s1")
        with pytest.raises(SessionStateError):
            tracker.record_score(make_slide(1, 90, cards[1].sentence))
        assert tracker.scores == []
        assert tracker.state is SessionState.RECORDING
        assert tracker.lock_store.read(tracker.lock_key) is None

    @given(st.lists(st.tuples(
        st.sampled_from(["record", "advance", "previous"]),
        st.integers(min_value=0, max_value=2),
        st.integers(min_value=0, max_value=100),
    ), max_size=40))
    def test_upserts_keep_one_slide_per_card(self, steps):
        """Any mix of records and moves leaves at most one slide per card, holding the latest score."""
        context = SessionContext(subject="english", activity="week-1", lock_enabled=False)
        tracker = SessionTracker([ExpectedCard(s) for s in SENTENCES], context)
        tracker.select_student("s1")
        latest = {}

        for action, index, score in steps:
            if action == "record":
                if tracker.state is SessionState.SUMMARY or index != tracker.current_index:
                    with pytest.raises(SessionStateError):
                        tracker.record_score(plain_slide(index, score))
                else:
                    tracker.record_score(plain_slide(index, score))
                    latest[index] = score
            elif action == "advance":
                if tracker.state is not SessionState.SUMMARY:
                    tracker.advance()
            else:
                tracker.previous()

        indices = [slide.card_index for slide in tracker.scores]
        assert indices == sorted(set(indices))
        assert {slide.card_index: slide.pron_score for slide in tracker.scores} == latest



class TestSummaryAndSave:
    """Test averages, performance entries and saving."""

    def test_summary_averages(self, tracker, make_slide):
        tracker.select_student("s1")
        record_all(tracker, make_slide, (80, 91, 70))
        summary = tracker.summary()
        # (80 + 91 + 70) / 3 = 80.33
        assert summary.pronunciation_avg == 80
        assert summary.reading_speed_avg == 60
        assert summary.overall_average == 80
        assert summary.slide_count == 3

    def test_summary_of_nothing(self, tracker):
        assert tracker.summary().overall_average == 0

    def test_performance_entry_in_summary(self, tracker, make_slide):
        tracker.select_student("s1")
        record_all(tracker, make_slide, (80, 90, 100))
        entry = tracker.build_performance_entry()
        assert entry.card_index == -1
        assert entry.student_id == "s1"
        assert entry.overall_average == 90

    def test_no_performance_entry_without_scores(self, tracker):
        tracker.select_student("s1")
        assert tracker.build_performance_entry() is None

    def test_summary_save_needs_feedback(self, tracker, make_slide):
        tracker.select_student("s1")
        record_all(tracker, make_slide)
        with pytest.raises(TeacherFeedbackRequiredError):
            tracker.save_session("   ")
        assert tracker.state is SessionState.SUMMARY

    def test_completed_session(self, tracker, json_sink, context, make_slide):
        tracker.select_student("s1")
        record_all(tracker, make_slide)
        assert tracker.save_session("Reads fluently.") is True
        assert tracker.state is SessionState.SAVED
        assert json_sink.fetch_session_status(["s1"], context)["s1"].completed
        assert tracker.select_student("s1") is SessionState.BLOCKED

    def test_mid_session_save(self, tracker, make_slide):
        tracker.select_student("s1")
        tracker.record_score(make_slide(0))
        assert tracker.save_session() is False
        assert tracker.state is SessionState.SAVED
        assert not tracker.lock_store.read(build_lock_key("english", "week-1", "s1")).completed

    def test_sink_failure_keeps_session_open(self, cards, context, lock_store, make_slide):
        sink = Mock()
        sink.load_session_slides.return_value = None
        sink.save_session_slides.side_effect = PersistenceError(
            error_handler.handle_persistence_error(RuntimeError("HTTP 500")))
        tracker = SessionTracker(cards, context, lock_store=lock_store, sink=sink)
        tracker.select_student("s1")
        record_all(tracker, make_slide)

        with pytest.raises(PersistenceError):
            tracker.save_session("Good")
        assert tracker.state is SessionState.SUMMARY
        assert len(tracker.scores) == 3
        assert not lock_store.read(tracker.lock_key).completed

    def test_already_completed_on_server(self, cards, context, lock_store, make_slide):
        sink = Mock()
        sink.load_session_slides.return_value = None
        sink.save_session_slides.side_effect = SessionAlreadyCompletedError(
            error_handler.handle_session_completed("s1"))
        tracker = SessionTracker(cards, context, lock_store=lock_store, sink=sink)
        tracker.select_student("s1")
        record_all(tracker, make_slide)

        assert tracker.save_session("Good") is False
        assert tracker.state is SessionState.SAVED
        assert not lock_store.read(build_lock_key("english", "week-1", "s1")).completed

    def test_unlocked_session_saves_performance_only(self, cards, context, make_slide):
        sink = Mock()
        tracker = SessionTracker(cards, replace(context, lock_enabled=False), sink=sink)
        tracker.select_student("s1")
        tracker.record_score(make_slide(0))
        assert tracker.save_session() is False
        sink.save_performance.assert_called_once()
        sink.save_session_slides.assert_not_called()

    def test_retry_after_slide_failure_saves_performance_once(self, cards, context, lock_store, make_slide):
        sink = Mock()
        sink.load_session_slides.return_value = None
        sink.save_session_slides.side_effect = [
            PersistenceError(error_handler.handle_persistence_error(RuntimeError("HTTP 503"))),
            True,
        ]
        tracker = SessionTracker(cards, context, lock_store=lock_store, sink=sink)
        tracker.select_student("s1")
        record_all(tracker, make_slide)

        with pytest.raises(PersistenceError):
            tracker.save_session("Good")
        sink.save_performance.assert_not_called()

        assert tracker.save_session("Good") is True
        assert sink.save_session_slides.call_count == 2
        sink.save_performance.assert_called_once()

    def test_retry_after_performance_failure_reuses_entry(self, cards, context, lock_store, make_slide):
        sink = Mock()
        sink.load_session_slides.return_value = None
        sink.save_performance.side_effect = [
            PersistenceError(error_handler.handle_persistence_error(RuntimeError("timeout"))),
            None,
        ]
        tracker = SessionTracker(cards, context, lock_store=lock_store, sink=sink)
        tracker.select_student("s1")
        record_all(tracker, make_slide)

        with pytest.raises(PersistenceError):
            tracker.save_session("Good")
        assert tracker.state is SessionState.SUMMARY

        assert tracker.save_session("Good") is True
        sink.save_session_slides.assert_called_once()
        first, second = (call.args[0] for call in sink.save_performance.call_args_list)
        assert first.id == second.id

    def test_new_score_after_failed_save_builds_new_entry(self, tracker, make_slide):
        tracker.sink = Mock()
        tracker.sink.load_session_slides.return_value = None
        tracker.sink.save_session_slides.side_effect = PersistenceError(
            error_handler.handle_persistence_error(RuntimeError("HTTP 500")))
        tracker.select_student("s1")
        tracker.record_score(make_slide(0, 40))
        with pytest.raises(PersistenceError):
            tracker.save_session()

        tracker.record_score(make_slide(0, 90))
        tracker.sink.save_session_slides.side_effect = None
        tracker.save_session()
        assert tracker.sink.save_performance.call_args.args[0].pron_score == 90
