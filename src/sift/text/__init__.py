"""Text primitives: normalization, tokenization, expansion, scoring, vector math."""

from sift.text.expander import QueryExpander
from sift.text.normalizer import LanguageDetection, TextNormalizer, estimate_token_count, preprocess, tokenize
from sift.text.scoring import calculate_keyword_match_score, extract_snippet, match_keywords
from sift.text.vector_math import cosine_similarity, quantize

__all__ = [
    "LanguageDetection",
    "QueryExpander",
    "TextNormalizer",
    "calculate_keyword_match_score",
    "cosine_similarity",
    "estimate_token_count",
    "extract_snippet",
    "match_keywords",
    "preprocess",
    "quantize",
    "tokenize",
]
