"""
GhostScore storage-cost tiers.

Retention cost for disclosure records, looked up in a threshold table:
a policy costs the price of the smallest tier that covers it, and a policy
longer than every tier costs the highest tier.
"""

import logging
from decimal import Decimal
from typing import List, Tuple

from ghostscore.errors import ValidationError

logger = logging.getLogger(__name__)

# (max retention days, cost per record)
STORAGE_TIERS: List[Tuple[int, Decimal]] = [
    (7, Decimal("0.001")),
    (30, Decimal("0.0015")),
    (90, Decimal("0.002")),
]


def storage_cost(retention_days: int, tiers: List[Tuple[int, Decimal]] = STORAGE_TIERS) -> Decimal:
    """
    Cost of retaining a record for retention_days.

    Raises:
        ValidationError: If retention_days is not a positive integer.
    """
    if isinstance(retention_days, bool) or not isinstance(retention_days, int):
        raise ValidationError("retention_days must be an integer")
    if retention_days <= 0:
        raise ValidationError(f"retention_days must be positive, got {retention_days}")
    if not tiers:
        raise ValidationError("No storage tiers configured")

    ordered = sorted(tiers)
    for max_days, cost in ordered:
        if retention_days <= max_days:
            return cost

    logger.debug(f"{retention_days}-day retention exceeds every tier; charging the top tier")
    return ordered[-1][1]
