"""
Generation pricing.

Credits charged per generation request, tiered by the number of uploaded
images.
"""

from dataclasses import dataclass
from typing import Tuple

MAX_IMAGES = 15


@dataclass(frozen=True)
class CreditTier:
    """Credits charged for requests with up to ``max_images`` images."""
    max_images: int
    credits: int


@dataclass(frozen=True)
class PricingTable:
    """Ordered image-count tiers."""
    tiers: Tuple[CreditTier, ...]

    def credits_for(self, image_count: int) -> int:
        """Credits for a request with ``image_count`` images.

        Args:
            image_count: Number of images attached (0 for text-only)

        Returns:
            Credits to charge

        Raises:
            ValueError: If image_count exceeds the largest tier
        """
        count = max(0, image_count)
        for tier in self.tiers:
            if count <= tier.max_images:
                return tier.credits
        raise ValueError(f"Too many images: {image_count} (max {self.tiers[-1].max_images})")


# Fixed tiers - text-only requests cost the same as up to 5 images
PRICING_TABLE = PricingTable((
    CreditTier(max_images=5, credits=1),
    CreditTier(max_images=10, credits=2),
    CreditTier(max_images=MAX_IMAGES, credits=3),
))


def generation_cost(image_count: int = 0, credits_per_generation: int = 1) -> int:
    """Credits charged for one generation request.

    Args:
        image_count: Number of images attached
        credits_per_generation: Configured base price of one generation

    Returns:
        Tier credits scaled by the base price
    """
    return PRICING_TABLE.credits_for(image_count) * credits_per_generation
