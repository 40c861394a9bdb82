"""Resolve the authoritative pickup window for an offer."""

from typing import Optional

from donation_lifecycle.models.claim import Claim
from donation_lifecycle.models.offer import Offer, PickupWindow


class PickupWindowResolver:
    """Picks the receiver-confirmed slot over the donor's default window."""

    def resolve(self, offer: Offer, claim: Optional[Claim]) -> Optional[PickupWindow]:
        if claim is not None and claim.confirmed_pickup_window is not None:
            return claim.confirmed_pickup_window
        return offer.default_pickup_window
