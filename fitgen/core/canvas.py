"""
Drawable Surface
================
A small in-memory drawing surface backed by Pillow.

The surface mirrors the parts of an HTML canvas the watermark pipeline
needs: a 2D context with a save/restore state stack, rotation, text drawing,
and raw RGBA pixel access.

Technical Notes:
- The backing image is always RGBA; text is alpha-composited onto it
- Rotation is applied to text by rendering a padded tile around the anchor
  point and rotating it with expand=True, so nothing gets clipped
- Pixel access goes through ImageData (flat uint8 array, row-major RGBA)
"""

import io
import math
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
from PIL import Image, ImageChops, ImageDraw, ImageFont

RGBA = Tuple[int, int, int, int]

CHANNELS = 4

# Canvas textAlign / textBaseline -> Pillow anchor characters
_ALIGN_ANCHORS = {"left": "l", "start": "l", "center": "m", "right": "r", "end": "r"}
_BASELINE_ANCHORS = {"top": "t", "middle": "m", "alphabetic": "s", "bottom": "d"}

# Bold sans-serif candidates per platform, tried in order
_BOLD_FONT_CANDIDATES = (
    "arialbd.ttf",
    "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "DejaVuSans-Bold.ttf",
)
_REGULAR_FONT_CANDIDATES = (
    "arial.ttf",
    "/System/Library/Fonts/Supplemental/Arial.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "DejaVuSans.ttf",
)

_font_cache: dict[tuple[int, bool], ImageFont.FreeTypeFont] = {}
_font_lock = threading.Lock()


def load_font(size: int, bold: bool = False) -> ImageFont.FreeTypeFont:
    """
    Get a cached sans-serif font of the given pixel size.

    Falls back to Pillow's bundled default font when no system font exists.
    """
    key = (size, bold)
    with _font_lock:
        if key not in _font_cache:
            candidates = _BOLD_FONT_CANDIDATES if bold else _REGULAR_FONT_CANDIDATES
            font = None
            for candidate in candidates:
                try:
                    font = ImageFont.truetype(candidate, size)
                    break
                except OSError:
                    continue
            if font is None:
                font = ImageFont.load_default(size=size)
            _font_cache[key] = font

        return _font_cache[key]


class ImageData:
    """
    Raw pixel buffer: ``width * height * 4`` bytes, row-major, RGBA order.

    ``data`` is a flat numpy uint8 array and is shared, not copied, so
    watermark codecs can mutate it in place.
    """

    def __init__(self, width: int, height: int, data: Optional[np.ndarray] = None):
        if width < 0 or height < 0:
            raise ValueError(f"Invalid dimensions: {width}x{height}")

        expected = width * height * CHANNELS
        if data is None:
            data = np.zeros(expected, dtype=np.uint8)
        else:
            data = np.asarray(data, dtype=np.uint8).reshape(-1)

        if data.size != expected:
            raise ValueError(
                f"Pixel buffer length {data.size} does not match "
                f"{width}x{height}x{CHANNELS} = {expected}"
            )

        self.width = width
        self.height = height
        self.data = data

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @classmethod
    def from_image(cls, image: Image.Image) -> "ImageData":
        """Copy the pixels of a Pillow image into a new buffer."""
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        arr = np.array(image, dtype=np.uint8)
        return cls(image.width, image.height, arr.reshape(-1))

    def to_image(self) -> Image.Image:
        """Build a new RGBA Pillow image from the buffer."""
        arr = self.data.reshape(self.height, self.width, CHANNELS)
        return Image.fromarray(arr)

    def copy(self) -> "ImageData":
        return ImageData(self.width, self.height, self.data.copy())


@dataclass
class _DrawState:
    """Style and transform values covered by save()/restore()."""
    font_size: int = 10
    bold: bool = False
    fill_style: RGBA = (0, 0, 0, 255)
    stroke_style: RGBA = (0, 0, 0, 255)
    line_width: int = 1
    text_align: str = "start"
    text_baseline: str = "alphabetic"
    rotation: float = 0.0  # radians, clockwise on screen


class Context2D:
    """
    2D drawing context bound to a :class:`Canvas`.

    Style attributes (``font_size``, ``bold``, ``fill_style``, ``stroke_style``,
    ``line_width``, ``text_align``, ``text_baseline``) behave like the canvas
    properties of the same names; colors are 8-bit RGBA tuples.
    """

    _STATE_FIELDS = (
        "font_size", "bold", "fill_style", "stroke_style",
        "line_width", "text_align", "text_baseline",
    )

    def __init__(self, canvas: "Canvas"):
        self._canvas = canvas
        self._state = _DrawState()
        self._stack: list[_DrawState] = []
        self._tile_cache: dict[tuple, Image.Image] = {}

    def __getattr__(self, name):
        if name in Context2D._STATE_FIELDS:
            return getattr(self._state, name)
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __setattr__(self, name, value):
        if name in Context2D._STATE_FIELDS:
            setattr(self._state, name, value)
        else:
            super().__setattr__(name, value)

    @property
    def canvas(self) -> "Canvas":
        return self._canvas

    # ===== State =====

    def save(self):
        self._stack.append(replace(self._state))

    def restore(self):
        # Unbalanced restore() is a no-op, as on a browser canvas
        if self._stack:
            self._state = self._stack.pop()

    def rotate(self, angle: float):
        """Rotate the coordinate system by ``angle`` radians (clockwise)."""
        self._state.rotation += angle

    # ===== Text =====

    def fill_text(self, text: str, x: float, y: float):
        self._draw_text(text, x, y, outline=False)

    def stroke_text(self, text: str, x: float, y: float):
        self._draw_text(text, x, y, outline=True)

    def _anchor(self) -> str:
        horizontal = _ALIGN_ANCHORS.get(self._state.text_align, "l")
        vertical = _BASELINE_ANCHORS.get(self._state.text_baseline, "s")
        return horizontal + vertical

    def _to_device(self, x: float, y: float) -> Tuple[float, float]:
        cos_a = math.cos(self._state.rotation)
        sin_a = math.sin(self._state.rotation)
        return x * cos_a - y * sin_a, x * sin_a + y * cos_a

    def _text_tile(self, text: str, outline: bool) -> Image.Image:
        """
        Render ``text`` into a square RGBA tile with the anchor at its center,
        rotated by the current transform.
        """
        state = self._state
        color = state.stroke_style if outline else state.fill_style
        key = (
            text, state.font_size, state.bold, color, state.line_width,
            self._anchor(), round(state.rotation, 9), outline,
        )
        if key in self._tile_cache:
            return self._tile_cache[key]

        font = load_font(state.font_size, state.bold)
        anchor = self._anchor()
        stroke = max(1, int(round(state.line_width)))

        left, top, right, bottom = font.getbbox(text, anchor=anchor, stroke_width=stroke)
        half = int(max(abs(left), abs(top), abs(right), abs(bottom))) + stroke + 2
        size = 2 * half

        glyphs = Image.new("L", (size, size), 0)
        ImageDraw.Draw(glyphs).text((half, half), text, font=font, fill=255, anchor=anchor)

        if outline:
            # Outline = stroked glyphs minus the glyph interiors
            stroked = Image.new("L", (size, size), 0)
            ImageDraw.Draw(stroked).text(
                (half, half), text, font=font, fill=255, anchor=anchor,
                stroke_width=stroke, stroke_fill=255
            )
            mask = ImageChops.subtract(stroked, glyphs)
        else:
            mask = glyphs

        alpha = color[3]
        tile = Image.new("RGBA", (size, size), (*color[:3], 0))
        tile.putalpha(mask.point(lambda v: v * alpha // 255))

        if state.rotation:
            # Pillow rotates counter-clockwise; canvas angles are clockwise
            tile = tile.rotate(
                -math.degrees(state.rotation), expand=True, resample=Image.BICUBIC
            )

        self._tile_cache[key] = tile
        return tile

    def _draw_text(self, text: str, x: float, y: float, outline: bool):
        if not text or self._state.font_size <= 0:
            return

        tile = self._text_tile(text, outline)
        dx, dy = self._to_device(x, y)
        left = int(round(dx)) - tile.width // 2
        top = int(round(dy)) - tile.height // 2
        self._canvas._composite(tile, left, top)

    # ===== Pixels =====

    def draw_image(self, image: Image.Image, x: int = 0, y: int = 0):
        """Draw ``image`` unscaled with its top-left corner at (x, y)."""
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        self._canvas._composite(image, x, y)

    def get_image_data(
            self,
            x: int = 0,
            y: int = 0,
            width: Optional[int] = None,
            height: Optional[int] = None
    ) -> ImageData:
        """Copy a rectangle of the surface into a new :class:`ImageData`."""
        width = self._canvas.width if width is None else width
        height = self._canvas.height if height is None else height
        region = self._canvas.image.crop((x, y, x + width, y + height))
        return ImageData.from_image(region)

    def put_image_data(self, image_data: ImageData, x: int = 0, y: int = 0):
        """Replace surface pixels with ``image_data`` (no blending)."""
        self._canvas.image.paste(image_data.to_image(), (x, y))


class Canvas:
    """
    In-memory RGBA drawing surface.

    Starts fully transparent. Use :meth:`get_context` to draw on it and
    :meth:`to_png_bytes` to encode it losslessly.
    """

    def __init__(self, width: int, height: int):
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas size must be positive, got {width}x{height}")
        self.width = width
        self.height = height
        self.image = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        self._context: Optional[Context2D] = None

    @classmethod
    def from_image(cls, image: Image.Image) -> "Canvas":
        """Create a canvas of the image's natural size with the image drawn on it."""
        canvas = cls(image.width, image.height)
        canvas.get_context("2d").draw_image(image, 0, 0)
        return canvas

    def get_context(self, kind: str = "2d") -> Optional[Context2D]:
        """Return the 2D context, or None for unsupported context kinds."""
        if kind != "2d":
            return None
        if self._context is None:
            self._context = Context2D(self)
        return self._context

    def _composite(self, layer: Image.Image, left: int, top: int):
        """Alpha-composite ``layer`` at (left, top), clipping to the surface."""
        src_left = max(0, -left)
        src_top = max(0, -top)
        src_right = min(layer.width, self.width - left)
        src_bottom = min(layer.height, self.height - top)

        if src_left >= src_right or src_top >= src_bottom:
            return

        self.image.alpha_composite(
            layer,
            dest=(left + src_left, top + src_top),
            source=(src_left, src_top, src_right, src_bottom),
        )

    def to_png_bytes(self) -> bytes:
        out = io.BytesIO()
        self.image.save(out, format="PNG")
        return out.getvalue()

    def save_png(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.image.save(path, format="PNG")
        return path
