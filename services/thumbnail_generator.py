"""Preview thumbnail service.

Provides a small OOP wrapper around Pillow to create the preview shown for
each uploaded scan. Input is raw image bytes; the preview fits within
`max_size` and is returned as PNG bytes.

Public class: `ThumbnailGenerator`

Example:
    tg = ThumbnailGenerator(max_size=(160, 160))
    preview_png = tg.create_preview(image_bytes)
"""
from __future__ import annotations

import io
import os
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

PREVIEW_EDGE = int(os.getenv("PREVIEW_MAX_SIZE", "160"))


class ThumbnailGenerator:
    """Generate PNG previews from raw image bytes.

    Args:
        max_size: Maximum width and height for the preview. Defaults to PREVIEW_MAX_SIZE square.
        background: Optional background color used when flattening images with alpha.
            If None, images with alpha are flattened against black, which suits OCT scans.
    """

    def __init__(self, max_size: Optional[Tuple[int, int]] = None, background: Tuple[int, int, int] | None = None):
        self.max_size = max_size or (PREVIEW_EDGE, PREVIEW_EDGE)
        self.background = background or (0, 0, 0)

    @staticmethod
    def detect_mime_type(data: bytes) -> Optional[str]:
        """Return the MIME type Pillow recognises for `data`, or None if it is not an image."""
        try:
            with Image.open(io.BytesIO(data)) as img:
                return Image.MIME.get(img.format or "")
        except (UnidentifiedImageError, OSError):
            return None

    def create_preview(self, data: bytes) -> bytes:
        """Create a preview from raw image bytes.

        Raises:
            ValueError: If the bytes cannot be opened as an image.
        """
        if not data:
            raise ValueError("Image bytes are required for a preview.")
        try:
            src = Image.open(io.BytesIO(data))
            src.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise ValueError("Uploaded bytes are not a supported image format") from exc

        src = src.convert("RGBA")
        src.thumbnail(self.max_size, Image.LANCZOS)

        background = Image.new("RGB", src.size, self.background)
        background.paste(src, mask=src.split()[3])

        out_io = io.BytesIO()
        background.save(out_io, format="PNG", optimize=True)
        return out_io.getvalue()
