"""Tests for request/response mapping verification."""

import pytest

from models.analysis_item import MappingStatus, TrackableItem
from services.mapping_verifier import mapping_status_for, verify_mapping
from utils.fingerprint import fingerprint_bytes


@pytest.fixture
def item(png_bytes) -> TrackableItem:
    return TrackableItem(
        id="item-42",
        filename="scan.png",
        content=png_bytes,
        mime_type="image/png",
        content_hash=fingerprint_bytes(png_bytes),
    )


@pytest.mark.asyncio
async def test_matching_id_is_verified(item):
    assert await verify_mapping(item, "item-42", None) is True


@pytest.mark.asyncio
async def test_different_id_is_a_mismatch(item):
    assert await verify_mapping(item, "item-41", None) is False


@pytest.mark.asyncio
async def test_absent_signals_verify_leniently(item):
    assert await verify_mapping(item, None, None) is True
    assert await verify_mapping(item, "", None) is True


@pytest.mark.asyncio
async def test_matching_hash_is_verified(item, png_bytes):
    assert await verify_mapping(item, "item-42", fingerprint_bytes(png_bytes)) is True
    assert await verify_mapping(item, None, fingerprint_bytes(png_bytes)) is True


@pytest.mark.asyncio
async def test_hash_mismatch_fails_even_when_id_matches(item):
    assert await verify_mapping(item, "item-42", fingerprint_bytes(b"another file")) is False


def test_fingerprint_is_deterministic_sha256():
    assert fingerprint_bytes(b"abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert fingerprint_bytes(b"abc") != fingerprint_bytes(b"abd")


def test_mapping_status_for():
    assert mapping_status_for(True) is MappingStatus.VERIFIED
    assert mapping_status_for(False) is MappingStatus.MISMATCH
