"""
Invisible Watermark Processor
=============================
Hides provenance metadata in the blue-channel least significant bits of an
RGBA pixel buffer, and recovers it.

Technical Notes:
- Blue channel of pixel k lives at byte offset k * 4 + 2
- Data format (in bits): [LENGTH: 32-bit big-endian][PAYLOAD]
- LENGTH counts payload bits, PAYLOAD is "FG1|userId|imageId|timestamp"
  with 8 bits per character, most significant bit first
- Each touched byte changes by at most 1; red, green and alpha never change
- PNG output is REQUIRED to keep the watermark (lossy encoders destroy it)
"""

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import numpy as np
from PIL import Image

from fitgen.core.bits import (
    HEADER_BITS,
    bits_to_text,
    bits_to_uint32,
    text_to_bits,
    uint32_to_bits,
)
from fitgen.core.canvas import CHANNELS, ImageData

logger = logging.getLogger(__name__)

BLUE_OFFSET = 2

# Plain ASCII decimal notation; int()/float() would also accept "1_000"
_NUMBER_RE = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?", re.ASCII)


@dataclass(frozen=True)
class WatermarkMetadata:
    """Provenance payload embedded in every downloaded image."""
    user_id: str
    image_id: str
    timestamp: int


class EmbedStatus(Enum):
    """Outcome of an embed call."""
    EMBEDDED = "embedded"
    TRUNCATED = "truncated"  # buffer too small, written as far as it fits


class InvisibleWatermarker:
    """
    LSB codec for provenance metadata.

    The marker is versioned: a future payload layout would use "FG2|".
    Metadata identifiers must not contain the "|" delimiter; this is not
    checked here.
    """

    MARKER = "FG1|"
    DELIMITER = "|"

    # ===== Payload =====

    def encode_payload(self, metadata: WatermarkMetadata) -> str:
        return (
            f"{self.MARKER}{metadata.user_id}{self.DELIMITER}"
            f"{metadata.image_id}{self.DELIMITER}{metadata.timestamp}"
        )

    def decode_payload(self, payload: str) -> Optional[WatermarkMetadata]:
        """Parse a payload string; None if it is not a valid FG1 payload."""
        if not payload.startswith(self.MARKER):
            return None

        parts = payload[len(self.MARKER):].split(self.DELIMITER)
        if len(parts) != 3:
            return None

        timestamp = _parse_timestamp(parts[2])
        if timestamp is None:
            return None

        return WatermarkMetadata(user_id=parts[0], image_id=parts[1], timestamp=timestamp)

    def payload_bit_length(self, metadata: WatermarkMetadata) -> int:
        return len(self.encode_payload(metadata)) * 8

    @staticmethod
    def capacity_bits(image_data: ImageData) -> int:
        """Payload bits available after the 32-bit header."""
        return max(0, image_data.pixel_count - HEADER_BITS)

    # ===== Embed / Extract =====

    def embed(self, image_data: ImageData, metadata: WatermarkMetadata) -> EmbedStatus:
        """
        Embed ``metadata`` into ``image_data`` in place.

        Bits that would land past the end of the buffer are skipped, so small
        images never raise; the result is then TRUNCATED.

        Args:
            image_data: Pixel buffer to mutate (blue channel only).
            metadata: Provenance to embed.

        Returns:
            EmbedStatus.EMBEDDED, or EmbedStatus.TRUNCATED when the buffer
            could not hold the full header and payload.
        """
        payload_bits = text_to_bits(self.encode_payload(metadata))
        bits = np.concatenate([uint32_to_bits(len(payload_bits)), payload_bits])

        pixels = image_data.data
        offsets = np.arange(len(bits), dtype=np.int64) * CHANNELS + BLUE_OFFSET
        in_range = offsets < pixels.size

        targets = offsets[in_range]
        pixels[targets] = (pixels[targets] & 0xFE) | bits[in_range]

        if in_range.all():
            return EmbedStatus.EMBEDDED

        logger.debug(
            "Watermark truncated: %d of %d bits fit in %dx%d image",
            int(in_range.sum()), len(bits), image_data.width, image_data.height
        )
        return EmbedStatus.TRUNCATED

    def extract(self, image_data: ImageData) -> Optional[WatermarkMetadata]:
        """
        Recover metadata from ``image_data``.

        Returns:
            WatermarkMetadata, or None when no valid watermark is present.
            A missing watermark and a corrupted one are indistinguishable.
        """
        pixels = image_data.data
        total_pixels = pixels.size // CHANNELS
        if total_pixels < HEADER_BITS:
            return None

        blues = pixels[BLUE_OFFSET::CHANNELS]
        bit_length = bits_to_uint32(blues[:HEADER_BITS] & 1)

        if bit_length <= 0 or bit_length > total_pixels - HEADER_BITS:
            return None

        payload_bits = blues[HEADER_BITS:HEADER_BITS + bit_length] & 1
        return self.decode_payload(bits_to_text(payload_bits))

    def extract_from_image(self, image: Image.Image) -> Optional[WatermarkMetadata]:
        return self.extract(ImageData.from_image(image))

    def extract_from_file(self, image_path: Union[str, Path]) -> Optional[WatermarkMetadata]:
        """
        Recover metadata from a saved image file.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            PIL.UnidentifiedImageError: If the file is not an image.
        """
        image_path = Path(image_path)
        if not image_path.exists():
            raise FileNotFoundError(f"Image not found: {image_path}")

        with Image.open(image_path) as img:
            return self.extract_from_image(img)


def _parse_timestamp(field: str) -> Optional[Union[int, float]]:
    """Parse a finite number; integers are kept exact."""
    text = field.strip()
    if not _NUMBER_RE.fullmatch(text):
        return None

    try:
        return int(text)
    except ValueError:
        pass

    try:
        value = float(text)
    except ValueError:
        return None

    if not math.isfinite(value):
        return None

    return int(value) if value.is_integer() else value


# Convenience functions
def apply_invisible_watermark(image_data: ImageData, metadata: WatermarkMetadata) -> EmbedStatus:
    return InvisibleWatermarker().embed(image_data, metadata)


def extract_invisible_watermark(image_data: ImageData) -> Optional[WatermarkMetadata]:
    return InvisibleWatermarker().extract(image_data)
