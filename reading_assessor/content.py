"""
Flashcard content: default card sets, content keys and a JSON-backed source.
"""

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional, Sequence

from .config import Config
from .errors import error_handler
from .models import ExpectedCard


logger = logging.getLogger(__name__)


DEFAULT_ENGLISH_CARDS: List[ExpectedCard] = [
    ExpectedCard("The cat sat on the mat.", ("cat", "sat", "mat")),
    ExpectedCard("A big dog ran in the park.", ("big", "dog", "ran")),
    ExpectedCard("She has a red ball and blue car.", ("red", "ball", "blue")),
    ExpectedCard("We go to the store for milk.", ("go", "store", "milk")),
    ExpectedCard("He can see the sun in the sky.", ("see", "sun", "sky")),
    ExpectedCard("I like to play with my friends.", ("like", "play", "friends")),
    ExpectedCard("The book is on the small table.", ("book", "small", "table")),
    ExpectedCard("They eat lunch at twelve o'clock.", ("eat", "lunch", "twelve")),
    ExpectedCard("My mother reads me a story.", ("mother", "reads", "story")),
    ExpectedCard("We live in a green house.", ("live", "green", "house")),
]

DEFAULT_FILIPINO_CARDS: List[ExpectedCard] = [
    ExpectedCard("Ang bata ay naglalaro sa parke.", ("bata", "parke")),
    ExpectedCard("Kumakain ng masarap na pagkain ang pamilya.", ("masarap", "pamilya")),
    ExpectedCard("Maganda ang bulaklak sa hardin.", ("bulaklak", "hardin")),
    ExpectedCard("Mabilis tumakbo ang maliit na aso.", ("mabilis", "aso")),
    ExpectedCard("Malakas ang ulan kanina.", ("malakas", "ulan")),
    ExpectedCard("Nagluluto ang nanay ng hapunan.", ("nanay", "hapunan")),
    ExpectedCard("Mabait ang guro sa eskwelahan.", ("guro", "eskwelahan")),
    ExpectedCard("Maliwanag ang buwan ngayong gabi.", ("buwan", "gabi")),
    ExpectedCard("Matulungin ang batang lalaki.", ("matulungin", "batang")),
    ExpectedCard("Masaya ang mga bata sa party.", ("masaya", "party")),
]

DEFAULT_CARDS = {
    'english': DEFAULT_ENGLISH_CARDS,
    'filipino': DEFAULT_FILIPINO_CARDS,
}


def is_valid_card_content(value: Any) -> bool:
    """True for a non-empty list of {sentence: str, highlights: [str, ...]} objects."""
    if not isinstance(value, list) or not value:
        return False
    for item in value:
        if not isinstance(item, dict):
            return False
        if not isinstance(item.get('sentence'), str):
            return False
        highlights = item.get('highlights')
        if not isinstance(highlights, list) or not all(isinstance(word, str) for word in highlights):
            return False
    return True


def build_content_key(base: str,
                      activity_id: Optional[str] = None,
                      phonemic_id: Optional[str] = None,
                      user_id: Optional[str] = None) -> str:
    """
    Build a scoped content key: ``base[:activity:<id>][:phonemic:<id>][:user:<id>]``.

    Blank parts are left out.
    """
    key = base
    for label, value in (('activity', activity_id), ('phonemic', phonemic_id), ('user', user_id)):
        if value is not None and str(value).strip():
            key += f":{label}:{str(value).strip()}"
    return key


class ContentSource(ABC):
    """Supplies the card set for a content key."""

    @abstractmethod
    def load_cards(self, content_key: str) -> List[ExpectedCard]:
        """Return the cards for ``content_key``; never empty."""


class JsonContentSource(ContentSource):
    """
    Card sets stored as one JSON file per content key.

    Missing or invalid content is replaced by the default cards, which are
    written back so later loads see a valid file.
    """

    def __init__(self, storage_dir: Optional[Path] = None,
                 defaults: Optional[Sequence[ExpectedCard]] = None):
        self.storage_dir = Path(storage_dir or Config.CONTENT_DIR).resolve()
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.defaults = list(defaults or DEFAULT_ENGLISH_CARDS)

    def _get_content_file_path(self, content_key: str) -> Path:
        digest = hashlib.sha256(content_key.encode('utf-8')).hexdigest()[:32]
        return self.storage_dir / f"content_{digest}.json"

    def load_cards(self, content_key: str) -> List[ExpectedCard]:
        content_file = self._get_content_file_path(content_key)
        if not content_file.exists():
            logger.info(f"No stored content for '{content_key}', seeding defaults")
            self.save_cards(content_key, self.defaults)
            return list(self.defaults)

        try:
            with open(content_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            error_handler.add_error(error_handler.handle_content_error(e, {'content_key': content_key}))
            data = None

        if is_valid_card_content(data):
            return [ExpectedCard.from_dict(item) for item in data]

        logger.warning(f"Invalid content for '{content_key}', restoring defaults")
        self.save_cards(content_key, self.defaults)
        return list(self.defaults)

    def save_cards(self, content_key: str, cards: Sequence[ExpectedCard]) -> None:
        content_file = self._get_content_file_path(content_key)
        with open(content_file, 'w', encoding='utf-8') as f:
            json.dump([card.to_dict() for card in cards], f, indent=2, ensure_ascii=False)
