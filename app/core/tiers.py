"""
Membership Tiers
================

Tier ordering and the lookup tables that normalize free-form provider
strings into it.

Every tier comparison in the application goes through ``tier_level`` /
``meets_tier``; nothing else compares tier strings.
"""

from enum import IntEnum
from typing import Optional


class MembershipLevel(IntEnum):
    """Membership tier hierarchy (higher = more access)."""
    FREE = 0
    COLLECTIVE = 1
    INSIDER = 2


# Canonical tier names as stored on Subscription.tier
TIER_FREE = "FREE"
TIER_COLLECTIVE = "COLLECTIVE"
TIER_INSIDER = "INSIDER"


# Every known tier string → level. Keys are lower-case; lookups only
# strip and lower-case the input.
TIER_LEVELS: dict[str, MembershipLevel] = {
    "free": MembershipLevel.FREE,
    "customer": MembershipLevel.FREE,
    "collective": MembershipLevel.COLLECTIVE,
    "success_plus": MembershipLevel.COLLECTIVE,  # legacy
    "success plus": MembershipLevel.COLLECTIVE,  # legacy
    "successplus": MembershipLevel.COLLECTIVE,  # legacy
    "success+ collective": MembershipLevel.COLLECTIVE,
    "insider": MembershipLevel.INSIDER,
    "success+ insider": MembershipLevel.INSIDER,
}


# Known checkout product names → canonical tier name.
PRODUCT_TIERS: dict[str, str] = {
    "free": TIER_FREE,
    "collective": TIER_COLLECTIVE,
    "success+ collective": TIER_COLLECTIVE,
    "success plus collective": TIER_COLLECTIVE,
    "success plus": TIER_COLLECTIVE,
    "success+": TIER_COLLECTIVE,
    "insider": TIER_INSIDER,
    "success+ insider": TIER_INSIDER,
    "success plus insider": TIER_INSIDER,
    "success+ insider annual": TIER_INSIDER,
    "success+ insider monthly": TIER_INSIDER,
    "success+ collective annual": TIER_COLLECTIVE,
    "success+ collective monthly": TIER_COLLECTIVE,
}

_LEVEL_NAMES: dict[MembershipLevel, str] = {
    MembershipLevel.FREE: "free",
    MembershipLevel.COLLECTIVE: "collective",
    MembershipLevel.INSIDER: "insider",
}


def _normalize(value: Optional[str]) -> str:
    return " ".join((value or "").split()).lower()


def tier_level(tier: Optional[str]) -> MembershipLevel:
    """Map any tier string to its level. Unknown strings rank as FREE."""
    return TIER_LEVELS.get(_normalize(tier), MembershipLevel.FREE)


def meets_tier(tier: Optional[str], required: Optional[str]) -> bool:
    """
    Check whether ``tier`` satisfies ``required``.

    A missing requirement means COLLECTIVE, the default for premium content.
    """
    required_level = (
        tier_level(required) if required else MembershipLevel.COLLECTIVE
    )
    return tier_level(tier) >= required_level


def canonical_tier_name(tier: Optional[str]) -> str:
    """
    Lower-case name reported to clients.

    Recognized strings collapse to ``free``/``collective``/``insider``;
    anything else is reported as-is (lower-cased) so support can see the
    raw value, and still ranks as FREE.
    """
    normalized = _normalize(tier)
    if normalized in TIER_LEVELS:
        return _LEVEL_NAMES[TIER_LEVELS[normalized]]
    return normalized or "free"


def map_product_tier(product_name: Optional[str]) -> str:
    """
    Map a checkout product name to the tier stored on the subscription.

    Known products map to ``FREE``/``COLLECTIVE``/``INSIDER``, an empty
    name maps to ``FREE`` and any other name is kept verbatim.
    """
    normalized = _normalize(product_name)
    if not normalized:
        return TIER_FREE
    return PRODUCT_TIERS.get(normalized, product_name.strip())


# -----------------------------------------------------------------------------
# Display helpers
# -----------------------------------------------------------------------------

TIER_DISPLAY_NAMES = {
    "free": "Free",
    "collective": "SUCCESS+ Collective",
    "insider": "SUCCESS+ Insider",
}

TIER_BENEFITS = {
    "free": [
        "Access to free articles",
        "Weekly newsletter",
        "Limited content library",
    ],
    "collective": [
        "All FREE benefits",
        "Unlimited premium articles",
        "Exclusive video content",
        "Digital magazine access",
        "Member-only events",
        "Ad-free experience",
    ],
    "insider": [
        "All COLLECTIVE benefits",
        "Print magazine subscription (6 issues/year)",
        "Early access to new features",
        "Priority customer support",
        "Exclusive interviews & bonus content",
        "Annual SUCCESS Summit access",
    ],
}

PREMIUM_ROUTE_PREFIXES = (
    "/magazine",
    "/premium",
    "/insider",
    "/courses",
    "/videos/premium",
)


def format_tier_name(tier: Optional[str]) -> str:
    """Human-readable tier name."""
    return TIER_DISPLAY_NAMES.get(canonical_tier_name(tier), "Free")


def get_tier_benefits(tier: Optional[str]) -> list[str]:
    """Benefits list for a tier, FREE benefits for anything unknown."""
    return TIER_BENEFITS.get(canonical_tier_name(tier), TIER_BENEFITS["free"])


def get_upgrade_url(required_tier: Optional[str] = None) -> str:
    """Upgrade URL for the tier a piece of content requires."""
    level = tier_level(required_tier) if required_tier else MembershipLevel.COLLECTIVE
    if level == MembershipLevel.FREE:
        level = MembershipLevel.COLLECTIVE
    return f"/subscribe?tier={_LEVEL_NAMES[level]}"


def is_premium_route(pathname: str) -> bool:
    """Check if a site path is behind the paywall."""
    return any(pathname.startswith(prefix) for prefix in PREMIUM_ROUTE_PREFIXES)
