"""Tests for cosine similarity and quantization."""

from __future__ import annotations

import pytest

from sift.text.vector_math import cosine_similarity, quantize


@pytest.mark.parametrize("v", [[1.0], [0.3, -0.4, 0.5], [2.0, 2.0, 2.0, 2.0], [1e-3, 5.0]])
def test_cosine_of_vector_with_itself_is_one(v):
    assert cosine_similarity(v, v) == pytest.approx(1.0)


def test_cosine_dimension_mismatch_is_zero():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0


def test_cosine_zero_vector_is_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
    assert cosine_similarity([1.0, 2.0], [0.0, 0.0]) == 0.0


def test_cosine_empty_is_zero():
    assert cosine_similarity([], []) == 0.0


def test_cosine_orthogonal_is_zero():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0


def test_cosine_opposite_clamped_to_zero():
    assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == 0.0


def test_cosine_partial_overlap():
    assert cosine_similarity([1.0, 0.0], [1.0, 1.0]) == pytest.approx(0.70710678)


def test_quantize_rounds_to_four_digits():
    assert quantize([0.123456, -1.00004]) == [0.1235, -1.0]
