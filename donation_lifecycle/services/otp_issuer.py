"""One-time pickup code issuance."""

import secrets

from donation_lifecycle.logging import get_logger
from donation_lifecycle.models.offer import Offer

logger = get_logger(__name__)

OTP_MIN = 100000
OTP_MAX = 999999


class OtpIssuer:
    """Issues the 6-digit pickup verification code for an offer."""

    def generate(self) -> str:
        """Generate a uniformly random code in [100000, 999999]."""
        return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))

    def issue_if_absent(self, offer: Offer) -> str:
        """
        Return the offer's pickup code, generating it on first call.

        The code is set on the offer in place; the caller persists it in
        the same unit of work as the status change that triggered issuance.
        An existing code is never regenerated.

        Args:
            offer: Offer to issue the code for

        Returns:
            The offer's pickup code
        """
        if offer.otp_code:
            return offer.otp_code

        offer.otp_code = self.generate()
        logger.info("pickup_code_issued", offer_id=str(offer.id))
        return offer.otp_code
