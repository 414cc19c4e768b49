"""Per-language text preprocessing, tokenization and language detection.

Two languages are first-class: Japanese ("ja") and English ("en"). Any other
language code uses the English path for preprocessing and tokenization.
"""

from __future__ import annotations

import logging
import math
import re
import unicodedata
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_EN_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)
_JA_PUNCT_RE = re.compile(
    r"[、。，．,.!?！？「」『』（）()\[\]［］【】〈〉《》〔〕{}｛｝・:：;；…‥\"'“”‘’〜~]+"
)

_KANA_RE = re.compile(r"[\u3040-\u30ff\u31f0-\u31ff\uff66-\uff9f]")
_KANJI_RE = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff\u3005]")
_HANGUL_RE = re.compile(r"[\u1100-\u11ff\u3130-\u318f\uac00-\ud7af]")
_LATIN_RE = re.compile(r"[A-Za-z]")

EN_STOPWORDS: frozenset[str] = frozenset(
    """
    a an the and or but if of at by for with about against between into through
    during before after above below to from up down in out on off over under
    again further then once here there when where why how all any both each few
    more most other some such no nor not only own same so than too very can will
    just should now is are was were be been being have has had having do does did
    i me my we our you your he him his she her it its they them their what which
    who whom this that these those am
    """.split()
)


@dataclass
class LanguageDetection:
    language: str
    confidence: float


LanguageDetector = Callable[[str], str]


# ---------------------------------------------------------------------------
# Preprocessing
# ---------------------------------------------------------------------------


def _fold_fullwidth(text: str) -> str:
    """Map full-width ASCII variants (！ U+FF01 .. ～ U+FF5E) to half-width."""
    return "".join(
        chr(ord(ch) - 0xFEE0) if 0xFF01 <= ord(ch) <= 0xFF5E else ch for ch in text
    )


def preprocess(text: str, language: str, *, remove_stopwords: bool = False) -> str:
    """Normalize *text* for search in *language*.

    Japanese: NFKC, full-width → half-width folding, punctuation unification
    (、， → 、 and 。． → 。), whitespace collapse.
    Other languages: NFKC, lowercase, punctuation stripped, whitespace
    collapsed, optional stop-word removal.
    """
    if not text:
        return ""
    normalized = unicodedata.normalize("NFKC", text)

    if language == "ja":
        normalized = _fold_fullwidth(normalized)
        normalized = re.sub(r"[、，]", "、", normalized)
        normalized = re.sub(r"[。．]", "。", normalized)
        return _WHITESPACE_RE.sub(" ", normalized).strip()

    normalized = normalized.lower()
    normalized = _EN_PUNCT_RE.sub(" ", normalized)
    normalized = _WHITESPACE_RE.sub(" ", normalized).strip()
    if remove_stopwords:
        normalized = " ".join(w for w in normalized.split(" ") if w not in EN_STOPWORDS)
    return normalized


# ---------------------------------------------------------------------------
# Tokenization
# ---------------------------------------------------------------------------


def _char_class(ch: str) -> str:
    if ch.isascii() and ch.isalnum():
        return "alnum"
    code = ord(ch)
    if 0x3040 <= code <= 0x309F:
        return "hiragana"
    if 0x30A0 <= code <= 0x30FF or 0x31F0 <= code <= 0x31FF or 0xFF66 <= code <= 0xFF9F:
        return "katakana"
    if 0x4E00 <= code <= 0x9FFF or 0x3400 <= code <= 0x4DBF or ch == "々":
        return "kanji"
    return "other"


def _split_char_runs(segment: str) -> list[str]:
    """Split *segment* into runs of one character class.

    "other" characters are emitted alone so they always sit on a boundary.
    """
    tokens: list[str] = []
    current = ""
    current_class: str | None = None
    for ch in segment:
        cls = _char_class(ch)
        if cls == "other":
            if current:
                tokens.append(current)
            tokens.append(ch)
            current, current_class = "", None
            continue
        if cls != current_class and current:
            tokens.append(current)
            current = ""
        current += ch
        current_class = cls
    if current:
        tokens.append(current)
    return tokens


def tokenize(text: str, language: str) -> list[str]:
    """Split *text* into tokens.

    English: whitespace-delimited words. Japanese: whitespace, then
    punctuation/bracket runs, then character-class runs (alphanumeric,
    hiragana, katakana, kanji).
    """
    if not text:
        return []
    if language != "ja":
        return [w for w in text.split() if w]

    tokens: list[str] = []
    for segment in text.split():
        for piece in _JA_PUNCT_RE.split(segment):
            if piece:
                tokens.extend(_split_char_runs(piece))
    return tokens


def estimate_token_count(text: str, language: str) -> int:
    """Rough model-token estimate: ja ceil(chars * 0.5), else ceil(words * 1.3)."""
    if not text:
        return 0
    if language == "ja":
        return math.ceil(len(text) * 0.5)
    return math.ceil(len(text.split()) * 1.3)


# ---------------------------------------------------------------------------
# Language detection
# ---------------------------------------------------------------------------


def _detect_by_script(text: str) -> str:
    if _KANA_RE.search(text):
        return "ja"
    if _HANGUL_RE.search(text):
        return "ko"
    if _KANJI_RE.search(text):
        # Kanji-only text (no kana): majority script decides
        kanji = len(_KANJI_RE.findall(text))
        latin = len(_LATIN_RE.findall(text))
        return "ja" if kanji >= latin else "en"
    return "en"


class TextNormalizer:
    """Language-aware front end used by the retrieval engine and synthesizer.

    Args:
        default_language: Fallback language code.
        supported: Language codes treated as supported.
        detector: Optional language-ID service (text → ISO code). Failures fall
            back to Unicode-range heuristics.
    """

    def __init__(
        self,
        default_language: str = "ja",
        supported: list[str] | None = None,
        detector: LanguageDetector | None = None,
    ) -> None:
        self.default_language = default_language
        self.supported = list(supported or ["ja", "en"])
        self._detector = detector

    def detect_language(self, text: str) -> LanguageDetection:
        """Detect the language of *text*. Never raises."""
        try:
            language: str | None = None
            confidence = 0.0
            if self._detector is not None:
                try:
                    detected = (self._detector(text) or "").strip().lower()
                    if detected:
                        language, confidence = detected[:2], 0.9
                except Exception as exc:
                    logger.debug("Language-ID service failed, using heuristics: %s", exc)

            if language is None:
                language, confidence = _detect_by_script(text), 0.7

            if language not in self.supported:
                return LanguageDetection(self.default_language, 0.5)
            return LanguageDetection(language, confidence)
        except Exception as exc:
            logger.warning("Language detection failed: %s", exc)
            return LanguageDetection(self.default_language, 0.3)

    def preprocess(self, text: str, language: str, *, remove_stopwords: bool = False) -> str:
        return preprocess(text, language, remove_stopwords=remove_stopwords)

    def tokenize(self, text: str, language: str) -> list[str]:
        return tokenize(text, language)

    def estimate_token_count(self, text: str, language: str) -> int:
        return estimate_token_count(text, language)
