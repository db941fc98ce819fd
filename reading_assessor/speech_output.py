"""
Sentence playback so the student can hear the target sentence.

The cloud neural voice is tried first; when it fails the local system
voice speaks the sentence at a slightly reduced rate. Playback has no
effect on scoring.
"""

import logging
from typing import Callable, Optional

from .alignment.languages import LanguageProfile, ENGLISH
from .providers.token import SpeechTokenService

try:
    import azure.cognitiveservices.speech as speechsdk
    AZURE_SPEECH_AVAILABLE = True
except ImportError:
    AZURE_SPEECH_AVAILABLE = False
    speechsdk = None

try:
    import pyttsx3
    TTS_AVAILABLE = True
except ImportError:
    TTS_AVAILABLE = False


logger = logging.getLogger(__name__)

FALLBACK_RATE_FACTOR = 0.9


class SpeechOutputError(Exception):
    """Raised when neither voice could speak the sentence."""
    pass


class SentenceSpeaker:
    """Speaks sentences through the cloud voice with a local fallback."""

    def __init__(self,
                 token_service: Optional[SpeechTokenService] = None,
                 profile: LanguageProfile = ENGLISH,
                 engine_factory: Optional[Callable[[], object]] = None):
        """
        Initialize the speaker.

        Args:
            token_service: Token source for the cloud voice; None disables it
            profile: Language profile supplying the voice name
            engine_factory: Builds the local TTS engine, defaults to pyttsx3.init
        """
        self.token_service = token_service
        self.profile = profile
        self.engine_factory = engine_factory or (pyttsx3.init if TTS_AVAILABLE else None)
        self._engine = None

    def speak(self, sentence: str) -> str:
        """
        Speak a sentence.

        Returns:
            "azure" or "local", whichever voice spoke

        Raises:
            SpeechOutputError: If both voices failed
        """
        if not sentence or not sentence.strip():
            raise SpeechOutputError("Nothing to speak")

        if self._cloud_available():
            try:
                self._speak_cloud(sentence)
                return "azure"
            except Exception as e:
                logger.warning(f"Neural voice failed, using local voice: {e}")

        self._speak_local(sentence)
        return "local"

    def _cloud_available(self) -> bool:
        return AZURE_SPEECH_AVAILABLE and self.token_service is not None and self.token_service.configured

    def _speak_cloud(self, sentence: str) -> None:
        token = self.token_service.get_token()
        speech_config = speechsdk.SpeechConfig(auth_token=token.token, region=token.region)
        speech_config.speech_synthesis_voice_name = self.profile.voice_name
        audio_config = speechsdk.audio.AudioOutputConfig(use_default_speaker=True)
        synthesizer = speechsdk.SpeechSynthesizer(speech_config=speech_config, audio_config=audio_config)

        result = synthesizer.speak_text_async(sentence).get()
        if result.reason != speechsdk.ResultReason.SynthesizingAudioCompleted:
            details = getattr(result, 'cancellation_details', None)
            reason = getattr(details, 'error_details', None) or str(result.reason)
            raise SpeechOutputError(f"Speech synthesis did not complete: {reason}")

    def _local_engine(self):
        if self._engine is None:
            if self.engine_factory is None:
                raise SpeechOutputError("No local voice available. Install with: pip install pyttsx3")
            self._engine = self.engine_factory()
            rate = self._engine.getProperty('rate')
            if rate:
                self._engine.setProperty('rate', int(rate * FALLBACK_RATE_FACTOR))
        return self._engine

    def _speak_local(self, sentence: str) -> None:
        engine = self._local_engine()
        try:
            engine.say(sentence)
            engine.runAndWait()
        except RuntimeError as e:
            raise SpeechOutputError(f"Local voice failed: {e}") from e
