"""
Approval thresholds for classified invoices.
"""

from campaign.models import IAStatus

VALID_CONFIDENCE = 70
INVALID_CONFIDENCE = 40


def decide_status(confidence: int, is_document: bool, is_invoice: bool) -> IAStatus:
    """
    Map a classification to an IA status.

    - confidence >= 70, a document, and an invoice -> VALID
    - confidence < 40, or not a document -> INVALID
    - anything else -> REVIEW
    """
    if confidence >= VALID_CONFIDENCE and is_document and is_invoice:
        return IAStatus.VALID
    if confidence < INVALID_CONFIDENCE or not is_document:
        return IAStatus.INVALID
    return IAStatus.REVIEW
