"""
Main entry point for the reading assessor.

Two commands:
  score    score a transcript against a sentence without audio
  session  run an interactive microphone session over a card set
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .alignment.languages import get_profile
from .config import Config, AssessmentSettings
from .content import DEFAULT_CARDS, JsonContentSource, build_content_key
from .errors import error_handler, ReadingAssessmentError, NoSpeechDetectedError
from .models import SessionContext, SpeechTiming
from .orchestrator import AssessmentOrchestrator
from .providers import AzureSpeechProvider, SpeechTokenMonitor, SpeechTokenService, WhisperFallbackProvider
from .scoring import ScoringEngine
from .session import (
    HttpPersistenceSink, JsonFilePersistenceSink, SessionLockStore, SessionState, SessionTracker
)
from .speech_output import SentenceSpeaker


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def print_score(result) -> None:
    print("=" * 50)
    print(f"Average score:   {result.average_score}  ({result.remarks})")
    print(f"Pronunciation:   {result.pron_score}")
    print(f"Correctness:     {result.correctness}")
    print(f"Fluency:         {result.fluency_score}")
    print(f"Completeness:    {result.completeness_score}")
    print(f"Phoneme match:   {result.phoneme_accuracy}")
    print(f"Reading speed:   {result.wpm} wpm, {result.reading_speed_label} ({result.reading_speed_score})")
    print("-" * 50)
    for feedback in result.word_feedback:
        marker = "" if feedback.error_type.value == "None" else f"  <- {feedback.error_type.value}"
        print(f"  {feedback.word:<15} {feedback.accuracy_score}{marker}")
    print("=" * 50)


def print_issues() -> None:
    """Print the errors and warnings collected during the run, if any."""
    if not (error_handler.has_errors() or error_handler.has_warnings()):
        return
    print("\n" + "=" * 50)
    print("ISSUES DETECTED")
    print("=" * 50)

    error_summary = error_handler.get_error_summary()

    if error_summary['warning_count'] > 0:
        print(f"Warnings: {error_summary['warning_count']}")
        for warning in error_summary['warnings']:
            print(f"   - [{warning['code']}] {warning['message']}")
            if warning['suggested_actions']:
                print(f"     Suggestion: {warning['suggested_actions'][0]}")

    if error_summary['error_count'] > 0:
        print(f"Errors: {error_summary['error_count']}")
        for error in error_summary['errors']:
            print(f"   - [{error['code']}] {error['message']}")
            if error['suggested_actions']:
                print(f"     Suggestion: {error['suggested_actions'][0]}")

    print("=" * 50)


def run_score(args) -> int:
    """Score a transcript offline."""
    profile = args.profile
    timing = SpeechTiming(
        speech_start_ms=0.0,
        speech_end_ms=float(args.duration_ms),
        cumulative_silent_ms=float(args.silence_ms),
    )
    result = ScoringEngine(profile).score(
        args.expected, args.spoken, timing, confidence=args.confidence
    )
    if args.json:
        payload = {
            'pron_score': result.pron_score,
            'correctness': result.correctness,
            'fluency_score': result.fluency_score,
            'completeness_score': result.completeness_score,
            'phoneme_accuracy': result.phoneme_accuracy,
            'wpm': result.wpm,
            'reading_speed_score': result.reading_speed_score,
            'reading_speed_label': result.reading_speed_label,
            'average_score': result.average_score,
            'label': result.label,
            'remarks': result.remarks,
            'word_feedback': [w.to_dict() for w in result.word_feedback],
        }
        print(json.dumps(payload, indent=2))
    else:
        print_score(result)
    return 0


def build_orchestrator(args) -> AssessmentOrchestrator:
    """Wire content, persistence, providers and tracker for an interactive session."""
    profile = args.profile
    settings = AssessmentSettings.from_config()
    data_dir = Path(args.data_dir) if args.data_dir else Config.DATA_DIR

    content_key = build_content_key(args.content_key, args.activity, args.phonemic_id)
    content = JsonContentSource(data_dir / "content", defaults=DEFAULT_CARDS[profile.name])
    cards = content.load_cards(content_key)

    if args.api_url:
        sink = HttpPersistenceSink(args.api_url)
    else:
        sink = JsonFilePersistenceSink(data_dir / "results")

    context = SessionContext(
        subject=args.subject,
        activity=args.activity or "",
        subject_name=profile.name.capitalize(),
        approved_schedule_id=args.schedule_id,
        phonemic_id=args.phonemic_id,
        expected_level=args.expected_level,
        lock_enabled=not args.no_lock,
    )
    tracker = SessionTracker(
        cards,
        context=context,
        lock_store=SessionLockStore(data_dir / "session_locks"),
        sink=sink,
        profile=profile,
    )

    token_service = SpeechTokenService(settings.speech_key, settings.speech_region,
                                       refresh_margin=settings.token_refresh_margin)
    primary = AzureSpeechProvider(token_service, profile, settings.timeouts, settings.sample_rate)
    fallback = WhisperFallbackProvider(model_size=args.whisper_model, profile=profile, timeouts=settings.timeouts)
    speaker = SentenceSpeaker(token_service, profile)

    return AssessmentOrchestrator(
        tracker,
        fallback=fallback,
        primary=primary,
        engine=ScoringEngine(profile),
        settings=settings,
        speaker=speaker,
        audio_dir=args.save_audio,
    )


SESSION_HELP = "[r]ecord  [p]lay  [n]ext  [b]ack  [s]ave  [q]uit"


def run_session(args) -> int:
    """Interactive microphone session for one student."""
    logger = logging.getLogger(__name__)
    orchestrator = build_orchestrator(args)
    tracker = orchestrator.tracker

    monitor = None
    primary = orchestrator.primary
    if primary is not None and primary.is_available():
        monitor = SpeechTokenMonitor(primary.token_service)
        monitor.start()

    try:
        tracker.refresh_statuses([args.student_id])
    except ReadingAssessmentError as e:
        logger.warning(f"Could not fetch session status: {e}")

    state = orchestrator.select_student(args.student_id, args.level)
    if state is SessionState.BLOCKED:
        print(f"Blocked: {tracker.message}")
        if monitor is not None:
            monitor.stop()
        return 1

    try:
        while True:
            if tracker.state is SessionState.SUMMARY:
                summary = tracker.summary()
                print("\nSession summary")
                for key, value in summary.to_dict().items():
                    print(f"  {key}: {value}")
                feedback = input("Teacher feedback: ").strip()
                try:
                    completed = orchestrator.finish_session(feedback)
                except ReadingAssessmentError as e:
                    print(f"{e}")
                    continue
                print(f"Session saved (completed={completed})")
                return 0

            card = tracker.current_card
            print(f"\nCard {tracker.current_index + 1}/{len(tracker.cards)}: {card.sentence}")
            if card.highlight_words:
                print(f"Focus words: {', '.join(card.highlight_words)}")
            command = input(f"{SESSION_HELP} > ").strip().lower()[:1]

            if command == "r":
                print("Listening... read the sentence aloud.")
                try:
                    print_score(orchestrator.record_attempt())
                except NoSpeechDetectedError as e:
                    print(e.processing_error.message)
                except ReadingAssessmentError as e:
                    print(f"Recording failed: {e}")
                    for action in e.processing_error.suggested_actions:
                        print(f"  - {action}")
            elif command == "p":
                try:
                    orchestrator.speak_current()
                except Exception as e:
                    print(f"Playback failed: {e}")
            elif command == "n":
                if not orchestrator.next_card():
                    print(orchestrator.status_message)
            elif command == "b":
                if not orchestrator.previous_card():
                    print("Going back is disabled for locked sessions.")
            elif command == "s":
                feedback = input("Teacher feedback (optional): ").strip()
                try:
                    completed = orchestrator.finish_session(feedback)
                except ReadingAssessmentError as e:
                    print(f"{e}")
                    continue
                print(f"Session saved (completed={completed})")
                return 0
            elif command == "q":
                orchestrator.stop()
                print("Session closed without saving.")
                return 0
    except (KeyboardInterrupt, EOFError):
        orchestrator.stop()
        print("\nSession interrupted.")
        return 130
    finally:
        if monitor is not None:
            monitor.stop()


def main():
    """Command line interface."""
    parser = argparse.ArgumentParser(
        description="Assess spoken reading of flashcard sentences",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s score "The cat sat on the mat." "the cat sat on the mat"
  %(prog)s score "The cat sat on the mat." "the cat sat" --duration-ms 1500 --json
  %(prog)s session student-42 --activity week-3 --expected-level "Word Reader"
  %(prog)s session student-42 --save-audio recordings/

Credentials:
  Set AZURE_SPEECH_KEY and AZURE_SPEECH_REGION to use the cloud recognizer;
  without them the local Whisper recognizer is used.
        """
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--language", default="english", help="Language profile (english or filipino)")

    subparsers = parser.add_subparsers(dest="command")

    score_parser = subparsers.add_parser("score", help="Score a transcript against a sentence")
    score_parser.add_argument("expected", help="Sentence the reader was asked to read")
    score_parser.add_argument("spoken", help="Transcript of what was read")
    score_parser.add_argument("--duration-ms", type=float, default=2000.0, help="Speech duration in milliseconds")
    score_parser.add_argument("--silence-ms", type=float, default=0.0, help="Silence inside the speech span")
    score_parser.add_argument("--confidence", type=float, default=None, help="Recognizer confidence (0-1)")
    score_parser.add_argument("--json", action="store_true", help="Print scores as JSON")

    session_parser = subparsers.add_parser("session", help="Run an interactive microphone session")
    session_parser.add_argument("student_id", help="Student identifier")
    session_parser.add_argument("--level", default=None, help="Student's phonemic level")
    session_parser.add_argument("--expected-level", default=None, help="Phonemic level of the activity")
    session_parser.add_argument("--subject", default="english", help="Subject used in the session lock key")
    session_parser.add_argument("--activity", default=None, help="Activity identifier")
    session_parser.add_argument("--phonemic-id", default=None, help="Phonemic level identifier for content")
    session_parser.add_argument("--schedule-id", default=None, help="Approved schedule identifier")
    session_parser.add_argument("--content-key", default=Config.FLASHCARD_CONTENT_KEY, help="Base content key")
    session_parser.add_argument("--api-url", default=None, help="Portal base URL; JSON files are used if omitted")
    session_parser.add_argument("--data-dir", default=None, help="Directory for content, locks and results")
    session_parser.add_argument("--whisper-model", default=Config.WHISPER_MODEL_SIZE, help="Whisper model size")
    session_parser.add_argument("--no-lock", action="store_true", help="Disable session locking")
    session_parser.add_argument("--save-audio", metavar="DIR", default=None, help="Also save each scored attempt as WAV in DIR")

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(args.verbose)
    error_handler.clear_errors()

    try:
        args.profile = get_profile(args.language)
    except KeyError:
        print(f"Unknown language: {args.language}")
        return 1

    if args.command == "score":
        code = run_score(args)
    else:
        code = run_session(args)
    print_issues()
    return code


if __name__ == "__main__":
    sys.exit(main())
