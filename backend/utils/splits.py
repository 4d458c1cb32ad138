"""Split calculation utilities for shared subscriptions."""


def split_evenly(total: int, num_members: int) -> list[int]:
    """
    Split a total amount (in cents) into num_members integer shares.

    Algorithm:
    1. Every member gets total // num_members
    2. The first (total % num_members) members get one extra cent
    3. The shares always sum back to the total
    """
    if num_members < 1:
        raise ValueError("num_members must be at least 1")

    share_per_person = total // num_members
    remainder = total % num_members

    # First members get the remainder cents
    return [share_per_person + (1 if idx < remainder else 0) for idx in range(num_members)]


def member_share(total: int, num_members: int, position: int = 0) -> int:
    """Share of the member at `position` (0-based, in join order) of an even split."""
    num_members = max(num_members, 1)
    position = min(max(position, 0), num_members - 1)
    return split_evenly(total, num_members)[position]


def savings_for_share(total: int, share: int) -> int:
    """How much a member saves compared to paying the full price alone."""
    return total - share


def price_per_member(total: int, max_members: int) -> float:
    """Advertised price of one spot, in cents, when the subscription is full."""
    if not max_members:
        return 0.0
    return total / max_members
