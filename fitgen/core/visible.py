"""
Visible Watermark Processor
===========================
Draws the tiled "FitGen Studio" brand overlay onto a drawable surface.

Technical Notes:
- Font size scales with the surface: max(16, round(min(w, h) * 0.04))
- The context is rotated by -30 degrees and the text is tiled over a
  square of half-width sqrt(w^2 + h^2), so the rotated grid always covers
  the whole surface and cannot be cropped out
- Each tile is filled (translucent white) then stroked (translucent black)
  so the mark stays legible on light and dark backgrounds
- All style/transform changes are scoped by save()/restore()
"""

import logging
import math
from enum import Enum

logger = logging.getLogger(__name__)


class RenderStatus(Enum):
    """Outcome of a render call."""
    RENDERED = "rendered"
    SKIPPED = "skipped"  # no 2D context available


class VisibleWatermarker:
    """
    Renders the diagonal, tiled brand watermark applied to free-tier exports.

    Works with any surface exposing ``width``, ``height`` and
    ``get_context("2d")``; the context needs ``save``, ``restore``,
    ``rotate``, ``fill_text`` and ``stroke_text`` plus the usual style
    attributes.
    """

    TEXT = "FitGen Studio"
    ANGLE = -math.pi / 6  # -30 degrees

    MIN_FONT_SIZE = 16
    FONT_SCALE = 0.04

    # Tile spacing as multiples of the font size
    SPACING_X = 10
    SPACING_Y = 5

    FILL_COLOR = (255, 255, 255, round(255 * 0.35))
    STROKE_COLOR = (0, 0, 0, round(255 * 0.15))
    LINE_WIDTH = 1

    @classmethod
    def font_size_for(cls, width: int, height: int) -> int:
        return max(cls.MIN_FONT_SIZE, round(min(width, height) * cls.FONT_SCALE))

    def render(self, surface) -> RenderStatus:
        """
        Draw the overlay onto ``surface``.

        Returns:
            RenderStatus.RENDERED, or RenderStatus.SKIPPED when the surface
            cannot provide a 2D context (nothing is drawn, nothing raised).
        """
        get_context = getattr(surface, "get_context", None)
        ctx = get_context("2d") if get_context is not None else None
        if ctx is None:
            logger.debug("No 2D context available, visible watermark skipped")
            return RenderStatus.SKIPPED

        width, height = surface.width, surface.height
        font_size = self.font_size_for(width, height)

        ctx.save()
        try:
            ctx.font_size = font_size
            ctx.bold = True
            ctx.fill_style = self.FILL_COLOR
            ctx.stroke_style = self.STROKE_COLOR
            ctx.line_width = self.LINE_WIDTH
            ctx.text_align = "center"
            ctx.text_baseline = "middle"

            ctx.rotate(self.ANGLE)

            spacing_x = font_size * self.SPACING_X
            spacing_y = font_size * self.SPACING_Y
            diagonal = math.sqrt(width * width + height * height)

            y = -diagonal
            while y < diagonal:
                x = -diagonal
                while x < diagonal:
                    ctx.fill_text(self.TEXT, x, y)
                    ctx.stroke_text(self.TEXT, x, y)
                    x += spacing_x
                y += spacing_y
        finally:
            ctx.restore()

        return RenderStatus.RENDERED


# Convenience function for simple usage
def apply_visible_watermark(surface) -> RenderStatus:
    return VisibleWatermarker().render(surface)
