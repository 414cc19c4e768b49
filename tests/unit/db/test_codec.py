"""Tests for the compressed embedding codec and shard naming."""

from __future__ import annotations

import pytest

from sift.db.codec import compress_and_encode_array, decode_and_decompress_array
from sift.db.shards import category_to_slug, ensure_shard_tables, paired_embeddings_table, shard_table_name
from sift.errors import StorageError


def test_roundtrip_to_four_decimals():
    vector = [0.123456789, -0.98761, 1.0, 0.0, 3.14159265]
    decoded = decode_and_decompress_array(compress_and_encode_array(vector))
    assert decoded == pytest.approx(vector, abs=5e-5)


def test_encoded_is_ascii_text():
    encoded = compress_and_encode_array([0.1] * 64)
    assert isinstance(encoded, str)
    encoded.encode("ascii")


def test_compression_shrinks_long_vectors():
    vector = [0.1234] * 512
    assert len(compress_and_encode_array(vector)) < len(str(vector))


@pytest.mark.parametrize("payload", ["not base64!!", "aGVsbG8=", ""])
def test_corrupt_payload_raises_storage_error(payload):
    with pytest.raises(StorageError):
        decode_and_decompress_array(payload)


# ------------------------------------------------------------------
# Shard naming
# ------------------------------------------------------------------


def test_category_slug():
    assert category_to_slug("billing") == "billing"
    assert category_to_slug("ad_campaigns") == "ad_campaigns"
    assert category_to_slug("Billing").startswith("billing_")
    assert category_to_slug("Ad Campaigns").startswith("ad_campaigns_")


@pytest.mark.parametrize(
    "a, b",
    [("Billing", "billing"), ("Ad Campaigns", "ad-campaigns"), ("Ad Campaigns", "ad_campaigns")],
)
def test_category_slugs_never_collide(a, b):
    assert category_to_slug(a) != category_to_slug(b)


def test_non_ascii_category_slugs_are_distinct():
    a = category_to_slug("請求")
    b = category_to_slug("広告")
    assert a != b
    assert a.startswith("c_")


def test_shard_table_name():
    assert shard_table_name("chunks", "billing", 2) == "chunks_billing_2"
    with pytest.raises(ValueError):
        shard_table_name("vectors", "billing", 1)


def test_paired_embeddings_table():
    assert paired_embeddings_table("chunks_billing_3") == "embeddings_billing_3"
    with pytest.raises(ValueError):
        paired_embeddings_table("documents")


def test_ensure_shard_tables_registers_both(tmp_db):
    chunks, embeddings = ensure_shard_tables(tmp_db, "Billing", 1)
    ensure_shard_tables(tmp_db, "Billing", 1)
    rows = tmp_db.execute("SELECT sheet_name, type FROM index_mapping ORDER BY type").fetchall()
    assert [(r["sheet_name"], r["type"]) for r in rows] == [(chunks, "chunks"), (embeddings, "embeddings")]


def test_ensure_shard_tables_rejects_foreign_registration(tmp_db):
    tmp_db.execute(
        "INSERT INTO index_mapping (sheet_name, category, type, shard_number, row_count) "
        "VALUES ('chunks_billing_1', 'other', 'chunks', 1, 0)"
    )
    tmp_db.commit()
    with pytest.raises(StorageError) as exc_info:
        ensure_shard_tables(tmp_db, "billing", 1)
    assert exc_info.value.code == "shard_conflict"
