"""
Quality gate for recognized text.

Text recognition on photos without real text tends to produce short runs of
symbols and digits. Sending that to a text-based backend costs quota and
yields hallucinated tags, so it is screened here first.
"""

from dataclasses import dataclass
from typing import Optional

MIN_TEXT_LENGTH = 10
MIN_LETTER_RATIO = 0.3


def is_letter(char: str) -> bool:
    """True for alphabetic characters, including kana and CJK ideographs."""
    return char.isalpha()


@dataclass(frozen=True)
class QualityVerdict:
    """Result of screening a piece of recognized text."""

    usable: bool
    reason: Optional[str] = None
    letter_ratio: float = 0.0

    def __bool__(self) -> bool:
        return self.usable


def assess_text(text: Optional[str]) -> QualityVerdict:
    """Screen recognized text and explain the decision.

    Args:
        text: Recognized text (may be None)

    Returns:
        QualityVerdict; falsy when the text should not be sent to a backend
    """
    trimmed = (text or "").strip()
    if len(trimmed) < MIN_TEXT_LENGTH:
        return QualityVerdict(False, f"too short ({len(trimmed)} chars)")

    letters = sum(1 for c in trimmed if is_letter(c))
    ratio = letters / len(trimmed)
    if ratio <= MIN_LETTER_RATIO:
        return QualityVerdict(False, f"letter ratio {ratio:.2f} too low", ratio)

    return QualityVerdict(True, None, ratio)


def is_text_usable(text: Optional[str]) -> bool:
    """Return True when recognized text is worth a text-based inference call."""
    return assess_text(text).usable
