"""
Intent classification for inbound confirmation replies (Hebrew + English).
Conservative: anything not clearly yes or no is NONE.
"""
import re
from enum import Enum


class Intent(str, Enum):
    YES = "yes"
    NO = "no"
    NONE = "none"


YES_PHRASES = {
    "כן",
    "כן אגיע",
    "אגיע",
    "מאשר",
    "מאשרת",
    "מגיע",
    "מגיעה",
    "yes",
    "y",
    "yeah",
    "yep",
    "confirm",
    "confirmed",
    "yes i'll be there",
}

NO_PHRASES = {
    "לא",
    "לא אגיע",
    "לא מגיע",
    "לא מגיעה",
    "לא בסוף",
    "מבטל",
    "מבטלת",
    "בטל",
    "no",
    "n",
    "nope",
    "cancel",
    "cancelled",
    "canceled",
}

HEBREW_NEGATIVE = "לא"
HEBREW_AFFIRMATIVE = "כן"
HEBREW_ATTEND_MARKERS = {"אגיע", "מגיע", "מגיעה", "אוכל", "יכול", "יכולה", "בסוף", "להגיע"}
ENGLISH_NEGATIVE_MARKERS = {"can't", "cant", "cannot", "won't", "wont"}
ENGLISH_ATTEND_MARKERS = {"make", "come", "attend", "arrive", "be"}


def normalize_text(text: str) -> str:
    """Trim, strip surrounding punctuation, collapse commas/whitespace, lowercase"""
    normalized = (text or "").strip().lower()
    normalized = re.sub(r"^[.,!?\s]+|[.,!?\s]+$", "", normalized)
    normalized = re.sub(r"[,.\s]+", " ", normalized)
    return normalized.strip()


def _is_yes(normalized: str, tokens: set) -> bool:
    if normalized in YES_PHRASES:
        return True
    return HEBREW_AFFIRMATIVE in tokens and "אגיע" in tokens


def _is_no(normalized: str, tokens: set) -> bool:
    if normalized in NO_PHRASES:
        return True
    if HEBREW_NEGATIVE in tokens and tokens & HEBREW_ATTEND_MARKERS:
        return True
    return bool(tokens & ENGLISH_NEGATIVE_MARKERS and tokens & ENGLISH_ATTEND_MARKERS)


def classify(text: str) -> Intent:
    normalized = normalize_text(text)
    if not normalized:
        return Intent.NONE
    tokens = set(normalized.split(" "))

    is_yes = _is_yes(normalized, tokens)
    is_no = _is_no(normalized, tokens)
    if is_yes and not is_no:
        return Intent.YES
    if is_no and not is_yes:
        return Intent.NO
    return Intent.NONE


def extract_selection(text: str) -> int | None:
    """Numeric choice for pure-digit replies; reserved for multi-choice prompts"""
    normalized = normalize_text(text)
    if re.fullmatch(r"[0-9]+", normalized):
        return int(normalized)
    return None
