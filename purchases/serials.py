"""
Serial number checks against the official registry.

A purchase's serial decides where its tickets come from:
- AVAILABLE in the registry: valid, tier and multiplier come from the registry
- USED by another purchase, or BLOCKED: not valid, auto-approval is blocked
- Not in the registry: allowed, tier and multiplier come from the product,
  and the result carries a warning for the reviewer
"""

from dataclasses import dataclass
from typing import Any, Optional

from campaign.data_store import DataStore
from campaign.models import Product, Purchase, SerialRegistryEntry, SerialStatus

UNKNOWN_SERIAL = "Serial no encontrado en registro oficial"
MISSING_SERIAL = "La compra no tiene número de serie"


@dataclass
class SerialValidation:
    """Outcome of checking one purchase's serial."""
    valid: bool
    tier: Optional[str]
    ticket_multiplier: int
    error: str = ""
    entry: Optional[SerialRegistryEntry] = None

    @property
    def claimable(self) -> bool:
        """True if approving the purchase should mark the serial USED."""
        return self.entry is not None and self.entry.status == SerialStatus.AVAILABLE

    def as_detail(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "error": self.error,
            "tier": self.tier,
            "ticket_multiplier": self.ticket_multiplier,
            "in_registry": self.entry is not None,
        }


def validate_serial(
    data_store: DataStore,
    purchase: Purchase,
    product: Optional[Product],
) -> SerialValidation:
    """Check a purchase's serial number against the registry."""
    fallback_tier = product.tier if product else None
    fallback_multiplier = product.ticket_multiplier if product else 1

    if not purchase.serial_number:
        return SerialValidation(True, fallback_tier, fallback_multiplier, error=MISSING_SERIAL)

    entry = data_store.get_serial(purchase.serial_number)
    if entry is None:
        return SerialValidation(True, fallback_tier, fallback_multiplier, error=UNKNOWN_SERIAL)

    # A serial this purchase already registered is still its own
    if entry.status == SerialStatus.AVAILABLE or entry.registered_by_purchase_id == purchase.id:
        return SerialValidation(True, entry.tier, entry.ticket_multiplier, entry=entry)

    return SerialValidation(
        False,
        entry.tier,
        entry.ticket_multiplier,
        error=f"Serial ya registrado (status: {entry.status})",
        entry=entry,
    )
