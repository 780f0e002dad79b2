"""
Image Loading
=============
Resolves an image reference to bytes and a decoded Pillow image.

Supported references:
- http:// and https:// URLs (fetched with requests)
- data: URIs (base64 or percent-encoded)
- file:// URLs and plain filesystem paths
"""

import base64
import binascii
import io
import logging
from pathlib import Path
from typing import Optional, Union
from urllib.parse import unquote, unquote_to_bytes, urlparse

import requests
from PIL import Image

logger = logging.getLogger(__name__)


class ImageLoadError(Exception):
    """The source image could not be fetched or decoded."""
    pass


def _decode_data_uri(uri: str) -> bytes:
    header, sep, body = uri.partition(",")
    if not sep:
        raise ImageLoadError("Malformed data URI: missing ','")

    if header.endswith(";base64"):
        try:
            return base64.b64decode(body, validate=False)
        except (binascii.Error, ValueError) as e:
            raise ImageLoadError(f"Invalid base64 data URI: {e}") from e

    return unquote_to_bytes(body)


def fetch_bytes(source: Union[str, Path], timeout: Optional[float] = None) -> bytes:
    """
    Fetch the raw bytes behind an image reference.

    Args:
        source: URL, data URI or filesystem path.
        timeout: Optional HTTP timeout in seconds. None waits indefinitely.

    Raises:
        ImageLoadError: If the reference cannot be read.
    """
    if isinstance(source, Path):
        source = str(source)

    if source.startswith("data:"):
        return _decode_data_uri(source)

    scheme = urlparse(source).scheme.lower()

    if scheme in ("http", "https"):
        logger.debug("Fetching %s", source)
        try:
            response = requests.get(source, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ImageLoadError(f"Failed to fetch {source}: {e}") from e
        return response.content

    if scheme == "file":
        path = Path(unquote(urlparse(source).path))
    elif not scheme or len(scheme) == 1:
        # Plain path (a single-letter "scheme" is a Windows drive)
        path = Path(source)
    else:
        raise ImageLoadError(f"Unsupported image reference scheme: {scheme!r}")

    try:
        return path.read_bytes()
    except OSError as e:
        raise ImageLoadError(f"Failed to read {path}: {e}") from e


def load_image(source: Union[str, Path], timeout: Optional[float] = None) -> Image.Image:
    """
    Load and fully decode the image behind ``source``.

    Raises:
        ImageLoadError: If the reference cannot be read or is not an image.
    """
    data = fetch_bytes(source, timeout=timeout)

    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, Image.DecompressionBombError) as e:
        raise ImageLoadError(f"Not a decodable image: {e}") from e

    return img
