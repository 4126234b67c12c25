"""Trackable upload and its analysis lifecycle state."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from models.analysis_result import AnalysisResult


class ImageStatus(str, Enum):
    PENDING = "pending"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class MappingStatus(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class TrackableItem:
    """Immutable snapshot of one uploaded image.

    Updates produce a new instance via `dataclasses.replace`; the `id` is the
    sole join key and never changes.

    Attributes:
        id: Unique identifier minted on upload, also sent as correlation id.
        filename: Original upload filename.
        content: Raw image bytes.
        mime_type: MIME type of `content`.
        content_hash: SHA-256 fingerprint of `content`.
        preview_ref: URL path of the stored preview thumbnail.
        status: Lifecycle status.
        mapping_status: Result of the last mapping verification.
        result: Analysis result, required when status is SUCCESS.
        error: Readable error text, required when status is ERROR.
        segmentation_image: Data URL of the segmentation map.
        heatmap_image: Data URL of the attention heatmap.
        segmentation_uncertainty_image: Data URL of the segmentation uncertainty map.
        created_at: Unix timestamp of the upload.
    """

    id: str
    filename: str
    content: bytes = field(repr=False)
    mime_type: str
    content_hash: Optional[str] = None
    preview_ref: Optional[str] = None
    status: ImageStatus = ImageStatus.PENDING
    mapping_status: MappingStatus = MappingStatus.UNVERIFIED
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    segmentation_image: Optional[str] = field(default=None, repr=False)
    heatmap_image: Optional[str] = field(default=None, repr=False)
    segmentation_uncertainty_image: Optional[str] = field(default=None, repr=False)
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("TrackableItem requires a non-empty id.")
        if self.status is ImageStatus.SUCCESS and self.result is None:
            raise ValueError(f"Item {self.id} cannot be successful without a result.")
        if self.status is ImageStatus.ERROR and not self.error:
            raise ValueError(f"Item {self.id} cannot be in error without an error message.")
