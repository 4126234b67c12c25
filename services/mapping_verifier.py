"""Round-trip check that an analysis result belongs to the image that was sent."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from models.analysis_item import MappingStatus, TrackableItem
from utils.fingerprint import fingerprint_bytes

LOGGER = logging.getLogger(__name__)


async def verify_mapping(
    item: TrackableItem,
    processed_id: Optional[str],
    processed_hash: Optional[str],
) -> bool:
    """Return False when the echoed id or hash contradicts the originating item.

    An explicit id mismatch always fails. An echoed hash must equal the
    fingerprint recomputed from the item's content. When neither is echoed
    the mapping is accepted.
    """
    if processed_id and processed_id != item.id:
        LOGGER.error("[Mapping Error] ID mismatch: expected %s, got %s", item.id, processed_id)
        return False

    if processed_hash:
        local_hash = await asyncio.to_thread(fingerprint_bytes, item.content)
        if local_hash != processed_hash:
            LOGGER.error(
                "[Mapping Error] Hash mismatch for %s: local %s, remote %s",
                item.id,
                local_hash,
                processed_hash,
            )
            return False

    LOGGER.info("[Mapping Verified] Image %s matches result.", item.id[:8])
    return True


def mapping_status_for(verified: bool) -> MappingStatus:
    return MappingStatus.VERIFIED if verified else MappingStatus.MISMATCH
