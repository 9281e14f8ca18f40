import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

SENTENCE_TERMINATORS = ".!?"
_SENTENCE_SPLIT = re.compile(r"[.!?]+")


@dataclass(frozen=True)
class ReconcilerSettings:
    min_final_length: int = 3
    min_trailing_word_length: int = 3


class TranscriptReconciler:
    """Running transcript state for one session.

    ``confirmed`` only ever grows from final segments; ``tentative`` holds the
    latest partial and is dropped whenever a final arrives. ``finalize()``
    merges the two once, at session end.
    """

    def __init__(self, settings: ReconcilerSettings | None = None) -> None:
        self._settings = settings or ReconcilerSettings()
        self._confirmed = ""
        self._tentative = ""
        self._finalized: str | None = None

    @property
    def confirmed(self) -> str:
        return self._confirmed

    @property
    def tentative(self) -> str:
        return self._tentative

    @property
    def finalized(self) -> str | None:
        return self._finalized

    @property
    def display_text(self) -> str:
        return " ".join(part for part in (self._confirmed.strip(), self._tentative.strip()) if part)

    def on_partial(self, text: str) -> None:
        self._tentative = text

    def on_final(self, text: str) -> None:
        stripped = text.strip()
        if not stripped:
            return
        if (
            len(stripped) < self._settings.min_final_length
            and not _ends_with_terminator(stripped)
        ):
            logger.debug("Skipping short final segment: %r", stripped)
            return
        if self._confirmed:
            self._confirmed += " "
        self._confirmed += stripped
        self._tentative = ""

    def finalize(self) -> str:
        if self._finalized is not None:
            return self._finalized

        confirmed = self._confirmed.strip()
        tentative = self._tentative.strip()
        threshold = self._settings.min_trailing_word_length

        if confirmed and tentative:
            if not _ends_with_terminator(confirmed):
                result = clean_transcript_text(f"{confirmed} {tentative}", threshold)
            else:
                cleaned_confirmed = clean_transcript_text(confirmed, threshold)
                cleaned_tentative = clean_transcript_text(tentative, threshold)
                if len(cleaned_tentative) > len(cleaned_confirmed):
                    result = cleaned_tentative
                else:
                    result = cleaned_confirmed
        else:
            result = clean_transcript_text(confirmed or tentative, threshold)

        self._finalized = result
        return result

    def reset(self) -> None:
        self._confirmed = ""
        self._tentative = ""
        self._finalized = None


def clean_transcript_text(text: str, min_trailing_word_length: int = 3) -> str:
    """Normalize transcript text into deduplicated, period-joined sentences.

    A trailing word shorter than ``min_trailing_word_length`` is treated as a
    cut-off partial and dropped, unless the text already ends a sentence or is
    a single word. The result is stable under repeated cleaning.
    """
    text = text.strip()
    if not text:
        return ""

    if not _ends_with_terminator(text):
        words = text.split()
        if len(words) > 1 and len(words[-1]) < min_trailing_word_length:
            text = " ".join(words[:-1])

    sentences: list[str] = []
    seen: set[str] = set()
    for piece in _SENTENCE_SPLIT.split(text):
        sentence = piece.strip()
        if not sentence or sentence in seen:
            continue
        seen.add(sentence)
        sentences.append(sentence)

    if not sentences:
        return ""
    return ". ".join(sentences) + "."


def _ends_with_terminator(text: str) -> bool:
    stripped = text.rstrip()
    return bool(stripped) and stripped[-1] in SENTENCE_TERMINATORS
