"""
Responder eligibility rules

Decides whether a civilian responder may take a signal of a given level.
Evaluated fresh on every call so certification or availability changes
apply immediately.
"""

from dataclasses import dataclass
from typing import Optional

from rescuelink.models.sos import ResponderProfile, Signal


REASON_NOT_VERIFIED = "not_verified"
REASON_UNAVAILABLE = "unavailable"
REASON_CERTIFICATION_REQUIRED = "certification_required"


@dataclass(frozen=True)
class Eligibility:
    """Eligibility verdict with the first failing reason"""
    eligible: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.eligible


class EligibilityEvaluator:
    """Pure eligibility checks for responder/signal pairs"""

    def evaluate(self, responder: ResponderProfile, signal: Signal) -> Eligibility:
        if not responder.is_verified():
            return Eligibility(False, REASON_NOT_VERIFIED)
        if not responder.available:
            return Eligibility(False, REASON_UNAVAILABLE)
        if signal.level not in responder.allowed_levels:
            return Eligibility(False, REASON_CERTIFICATION_REQUIRED)
        return Eligibility(True)

    def can_accept(self, responder: ResponderProfile, signal: Signal) -> bool:
        """Check if the responder is verified, available and allowed the signal level"""
        return self.evaluate(responder, signal).eligible

    @staticmethod
    def describe(reason: Optional[str]) -> str:
        """Human readable text for a failing reason"""
        messages = {
            REASON_NOT_VERIFIED: "Responder is not verified",
            REASON_UNAVAILABLE: "Responder is marked unavailable",
            REASON_CERTIFICATION_REQUIRED: "A certification is required for this SOS level",
        }
        return messages.get(reason, "Responder is eligible")
