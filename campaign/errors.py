"""
Domain errors for the campaign core.

Each error maps to one category of the error taxonomy and carries the
Spanish, user-facing message returned by the HTTP layer.
"""


class CampaignError(Exception):
    """Base class for all campaign errors."""

    status_code = 500

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidRequestError(CampaignError):
    """Malformed or missing input."""

    status_code = 400


class PurchaseNotFoundError(CampaignError):
    """Unknown purchase id."""

    status_code = 404

    def __init__(self, purchase_id: str):
        super().__init__("Compra no encontrada", details={"purchaseId": purchase_id})
        self.purchase_id = purchase_id


class PoolExhaustedError(CampaignError):
    """Not enough unassigned tickets of a tier to satisfy a draw."""

    def __init__(self, tier: str, requested: int, available: int):
        super().__init__(
            f"No hay suficientes tickets disponibles en el tier {tier} "
            f"(solicitados: {requested}, disponibles: {available})"
        )
        self.tier = tier
        self.requested = requested
        self.available = available
