"""
Subscription tier policy for the visible watermark.
"""

from enum import Enum
from typing import Optional, Union

from fitgen.config import bypass_credits_enabled


class Tier(str, Enum):
    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"


def should_show_visible_watermark(tier: Union[Tier, str], bypass: Optional[bool] = None) -> bool:
    """
    Decide whether a download gets the visible brand overlay.

    Only the free tier does. The bypass switch (FITGEN_BYPASS_CREDITS, or
    ``bypass`` when given) is checked first and disables the overlay for
    every tier.
    """
    if bypass is None:
        bypass = bypass_credits_enabled()
    if bypass:
        return False
    return tier == Tier.FREE
