"""
Purchase validation: invoice classification, approval policy and ticket issuance.
"""

from purchases.classifier import DocumentClassifier, parse_classification
from purchases.decision import decide_status
from purchases.models import ProcessPurchaseRequest, ProcessPurchaseResponse
from purchases.workflow import PurchaseValidationWorkflow

__all__ = [
    "DocumentClassifier",
    "parse_classification",
    "decide_status",
    "ProcessPurchaseRequest",
    "ProcessPurchaseResponse",
    "PurchaseValidationWorkflow",
]
