"""
Payment Comment Parser

Payment-platform transactions carry a free-text comment such as
"Bonus for driver Juan Perez for completing 5 trips". The driver name
and milestone are recovered from it when the tracker has not already
done so.
"""

import re
from decimal import Decimal
from typing import Optional

NAME_MARKER = "for driver"
NAME_TERMINATOR = " for completing"

# "25 trips" must not be read as "5 trips"
MILESTONE_PATTERN = re.compile(r"(?<!\d)(1|5|25) trips?\b", re.IGNORECASE)

# Milestone type -> payout per milestone
MILESTONE_AMOUNTS = {
    1: Decimal("25.00"),
    5: Decimal("35.00"),
    25: Decimal("100.00"),
}


def extract_driver_name(comment: Optional[str]) -> Optional[str]:
    """Name between "for driver" and " for completing" (or end of text)."""
    if not comment:
        return None

    lowered = comment.lower()
    start = lowered.find(NAME_MARKER)
    if start == -1:
        return None

    name_start = start + len(NAME_MARKER)
    name_end = lowered.find(NAME_TERMINATOR, name_start)
    if name_end == -1:
        name_end = len(comment)

    name = comment[name_start:name_end].strip()
    return name or None


def extract_milestone_type(comment: Optional[str]) -> Optional[int]:
    if not comment:
        return None

    match = MILESTONE_PATTERN.search(comment)
    if not match:
        return None
    return int(match.group(1))


def milestone_amount(milestone_type: Optional[int]) -> Decimal:
    """Payout for a milestone type; zero when unknown."""
    if milestone_type is None:
        return Decimal("0")
    return MILESTONE_AMOUNTS.get(milestone_type, Decimal("0"))
