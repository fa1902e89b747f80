"""
JSON-backed data store for the campaign core.

This module stands in for the hosted tables the workflow and dispatchers talk
to. Fixtures are read from a data directory; writes only change the
in-memory state of the store instance.

Design decisions:
- Tables load lazily from JSON fixture files (missing file = empty table)
- Every mutation runs under one store-wide lock
- Ticket assignment is a single locked operation: it is the only place where
  two concurrent validations could otherwise hand out the same code, or draw
  twice for the same purchase
- SENT and SKIPPED notification log entries are final
- Module-level singleton for the app, fresh instances in tests
"""

import json
import logging
import secrets
import threading
from pathlib import Path
from typing import Optional
from uuid import uuid4

from campaign.errors import PoolExhaustedError
from campaign.models import (
    Channel,
    Coupon,
    NotificationLogEntry,
    NotificationStatus,
    NotificationTemplate,
    OwnerType,
    PoolTicket,
    Product,
    Purchase,
    SerialRegistryEntry,
    SerialStatus,
    SettingRow,
    TicketAssignment,
    utcnow,
)

logger = logging.getLogger("data_store")

# Ambiguous characters (0/O, 1/I) are left out of generated codes
TICKET_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

# A delivered or deliberately skipped notification is never rewritten
FINAL_NOTIFICATION_STATUSES = (NotificationStatus.SENT, NotificationStatus.SKIPPED)


def normalize_serial(serial_number: str) -> str:
    return (serial_number or "").strip().upper()


class DataStore:
    """
    Central store for purchases, the ticket pool and the notification tables.

    In the deployed system each of these is a table in the hosted database and
    ticket assignment is a stored procedure. Here they share one process and
    one lock.
    """

    def __init__(self, data_dir: Optional[Path] = None):
        """
        Initialize the data store.

        Args:
            data_dir: Directory holding the JSON fixtures.
                      Defaults to ./data relative to project root.
        """
        if data_dir is None:
            data_dir = Path(__file__).parent.parent / "data"

        self.data_dir = Path(data_dir)
        self._lock = threading.RLock()

        # In-memory tables - loaded lazily
        self._products: Optional[dict[str, Product]] = None
        self._purchases: Optional[dict[str, Purchase]] = None
        self._pool: Optional[dict[str, PoolTicket]] = None  # insertion order is draw order
        self._assignments: Optional[list[TicketAssignment]] = None
        self._coupons: Optional[dict[str, Coupon]] = None
        self._serials: Optional[dict[str, SerialRegistryEntry]] = None  # keyed by serial number
        self._notification_log: Optional[dict[str, NotificationLogEntry]] = None
        self._templates: Optional[list[NotificationTemplate]] = None
        self._settings: Optional[dict[str, str]] = None

    # =========================================================================
    # Data Loading (lazy)
    # =========================================================================

    def _load_json(self, filename: str) -> list[dict]:
        """Load a JSON fixture file."""
        filepath = self.data_dir / filename
        if not filepath.exists():
            return []
        with open(filepath, "r", encoding="utf-8") as f:
            return json.load(f)

    def _ensure_products_loaded(self):
        with self._lock:
            if self._products is None:
                data = self._load_json("products.json")
                self._products = {p["id"]: Product(**p) for p in data}

    def _ensure_purchases_loaded(self):
        with self._lock:
            if self._purchases is None:
                data = self._load_json("purchases.json")
                self._purchases = {p["id"]: Purchase(**p) for p in data}

    def _ensure_pool_loaded(self):
        with self._lock:
            if self._pool is None:
                data = self._load_json("ticket_pool.json")
                self._pool = {t["id"]: PoolTicket(**t) for t in data}

    def _ensure_assignments_loaded(self):
        with self._lock:
            if self._assignments is None:
                data = self._load_json("tickets_assigned.json")
                self._assignments = [TicketAssignment(**a) for a in data]

    def _ensure_coupons_loaded(self):
        with self._lock:
            if self._coupons is None:
                data = self._load_json("coupons.json")
                self._coupons = {c["code"]: Coupon(**c) for c in data}

    def _ensure_serials_loaded(self):
        with self._lock:
            if self._serials is None:
                data = self._load_json("serial_registry.json")
                self._serials = {
                    normalize_serial(s["serial_number"]): SerialRegistryEntry(**s) for s in data
                }

    def _ensure_notification_log_loaded(self):
        with self._lock:
            if self._notification_log is None:
                data = self._load_json("notification_log.json")
                self._notification_log = {n["id"]: NotificationLogEntry(**n) for n in data}

    def _ensure_templates_loaded(self):
        with self._lock:
            if self._templates is None:
                data = self._load_json("notification_templates.json")
                self._templates = [NotificationTemplate(**t) for t in data]

    def _ensure_settings_loaded(self):
        with self._lock:
            if self._settings is None:
                data = self._load_json("settings.json")
                rows = [SettingRow(**s) for s in data]
                self._settings = {r.setting_key: r.setting_value for r in rows}

    # =========================================================================
    # Product Operations
    # =========================================================================

    def get_product(self, product_id: str) -> Optional[Product]:
        """Get a product by ID."""
        self._ensure_products_loaded()
        return self._products.get(product_id)

    def get_products(self) -> list[Product]:
        """Get all products."""
        self._ensure_products_loaded()
        return list(self._products.values())

    # =========================================================================
    # Purchase Operations
    # =========================================================================

    def get_purchase(self, purchase_id: str) -> Optional[Purchase]:
        """Get a purchase by ID."""
        self._ensure_purchases_loaded()
        return self._purchases.get(purchase_id)

    def get_purchases(self) -> list[Purchase]:
        self._ensure_purchases_loaded()
        return list(self._purchases.values())

    def add_purchase(self, purchase: Purchase) -> Purchase:
        """Register a new purchase (client submission)."""
        with self._lock:
            self._ensure_purchases_loaded()
            self._purchases[purchase.id] = purchase
        return purchase

    def update_purchase(self, purchase_id: str, **fields) -> Optional[Purchase]:
        """
        Update fields of a purchase (in-memory only).

        Returns the updated purchase or None if not found.
        """
        with self._lock:
            self._ensure_purchases_loaded()
            purchase = self._purchases.get(purchase_id)
            if purchase is None:
                return None
            fields.setdefault("updated_at", utcnow())
            updated = Purchase(**{**purchase.model_dump(), **fields})
            self._purchases[purchase_id] = updated
            return updated

    # =========================================================================
    # Ticket Pool Operations
    # =========================================================================

    def get_pool(self, tier: Optional[str] = None) -> list[PoolTicket]:
        """Get pool tickets, optionally restricted to one tier."""
        self._ensure_pool_loaded()
        return [t for t in self._pool.values() if tier is None or t.tier == tier]

    def count_available(self, tier: str) -> int:
        return sum(1 for t in self.get_pool(tier) if not t.is_assigned)

    def count_assigned(self, tier: Optional[str] = None) -> int:
        return sum(1 for t in self.get_pool(tier) if t.is_assigned)

    def generate_tickets(self, tier: str, count: int, prefix: str = "SKY") -> list[PoolTicket]:
        """
        Bulk-generate unique ticket codes for a tier.

        Codes look like SKY-T3-7KQ2M9XA and are never reused.
        """
        if count < 1:
            raise ValueError("count must be >= 1")

        with self._lock:
            self._ensure_pool_loaded()
            existing = {t.ticket_code for t in self._pool.values()}
            created = []
            while len(created) < count:
                suffix = "".join(secrets.choice(TICKET_CODE_ALPHABET) for _ in range(8))
                code = f"{prefix}-{tier}-{suffix}"
                if code in existing:
                    continue
                existing.add(code)
                ticket = PoolTicket(id=str(uuid4()), ticket_code=code, tier=tier)
                self._pool[ticket.id] = ticket
                created.append(ticket)

        logger.info(f"[POOL] Generated {count} tickets for tier {tier}")
        return created

    def assign_tickets(
        self,
        count: int,
        tier: str,
        purchase_id: str,
        owner_name: str,
        owner_email: str,
        owner_phone: Optional[str] = None,
    ) -> list[TicketAssignment]:
        """
        Atomically draw `count` unassigned tickets of `tier` for a purchase.

        Selecting, marking assigned and recording the assignment rows happen
        under one lock, so concurrent callers never receive overlapping codes.
        Either all requested tickets are assigned or none are.

        Raises:
            PoolExhaustedError: fewer than `count` tickets are available
        """
        if count < 1:
            raise ValueError("count must be >= 1")

        with self._lock:
            self._ensure_pool_loaded()
            self._ensure_assignments_loaded()

            available = [t for t in self._pool.values() if t.tier == tier and not t.is_assigned]
            if len(available) < count:
                raise PoolExhaustedError(tier, count, len(available))

            now = utcnow()
            assignments = []
            for ticket in available[:count]:
                self._pool[ticket.id] = ticket.model_copy(
                    update={"is_assigned": True, "assigned_at": now}
                )
                assignments.append(TicketAssignment(
                    id=str(uuid4()),
                    purchase_id=purchase_id,
                    ticket_id=ticket.id,
                    ticket_code=ticket.ticket_code,
                    tier=tier,
                    owner_name=owner_name,
                    owner_email=owner_email,
                    owner_phone=owner_phone,
                    owner_type=OwnerType.BUYER,
                    assigned_at=now,
                ))
            self._assignments.extend(assignments)

        logger.info(f"[POOL] Assigned {count} {tier} tickets to purchase {purchase_id}")
        return assignments

    def assign_tickets_once(
        self,
        count: int,
        tier: str,
        purchase_id: str,
        owner_name: str,
        owner_email: str,
        owner_phone: Optional[str] = None,
    ) -> tuple[list[TicketAssignment], bool]:
        """
        Draw tickets for a purchase unless it already has some.

        The existence check and the draw share the store lock, so concurrent
        runs for the same purchase draw at most once.

        Returns:
            (assignments, newly_assigned). For an already-ticketed purchase
            these are its stored rows and False.

        Raises:
            PoolExhaustedError: nothing assigned yet and the pool is short
        """
        with self._lock:
            existing = self.get_assignments_for_purchase(purchase_id)
            if existing:
                return existing, False
            assignments = self.assign_tickets(
                count, tier, purchase_id, owner_name, owner_email, owner_phone
            )
            return assignments, True

    def get_assignments_for_purchase(self, purchase_id: str) -> list[TicketAssignment]:
        """Existing assignments for a purchase, in draw order."""
        with self._lock:
            self._ensure_assignments_loaded()
            return [a for a in self._assignments if a.purchase_id == purchase_id]

    # =========================================================================
    # Serial Registry Operations
    # =========================================================================

    def get_serial(self, serial_number: str) -> Optional[SerialRegistryEntry]:
        """Registry entry for a serial, matched case-insensitively."""
        with self._lock:
            self._ensure_serials_loaded()
            return self._serials.get(normalize_serial(serial_number))

    def add_serial(self, entry: SerialRegistryEntry) -> SerialRegistryEntry:
        """Register an official serial (admin registry import)."""
        entry = entry.model_copy(update={"serial_number": normalize_serial(entry.serial_number)})
        with self._lock:
            self._ensure_serials_loaded()
            self._serials[entry.serial_number] = entry
        return entry

    def mark_serial_used(self, serial_number: str, purchase_id: str) -> Optional[SerialRegistryEntry]:
        """
        Mark an AVAILABLE serial as USED by a purchase.

        Returns the updated entry, or None if the serial is unknown or was not
        AVAILABLE.
        """
        with self._lock:
            self._ensure_serials_loaded()
            key = normalize_serial(serial_number)
            entry = self._serials.get(key)
            if entry is None or entry.status != SerialStatus.AVAILABLE:
                return None
            updated = entry.model_copy(update={
                "status": SerialStatus.USED.value,
                "registered_at": utcnow(),
                "registered_by_purchase_id": purchase_id,
            })
            self._serials[key] = updated

        logger.info(f"[SERIAL] {key} registered by purchase {purchase_id}")
        return updated

    # =========================================================================
    # Coupon Operations
    # =========================================================================

    def issue_coupon(
        self,
        serial_number: str,
        owner_type: OwnerType,
        owner_name: Optional[str] = None,
        owner_email: Optional[str] = None,
        owner_phone: Optional[str] = None,
        owner_purchase_id: Optional[str] = None,
        owner_sale_id: Optional[str] = None,
        product_id: Optional[str] = None,
    ) -> Coupon:
        """Issue an ACTIVE coupon with a fresh unique code."""
        with self._lock:
            self._ensure_coupons_loaded()
            while True:
                code = "CP-" + "".join(secrets.choice(TICKET_CODE_ALPHABET) for _ in range(8))
                if code not in self._coupons:
                    break
            coupon = Coupon(
                code=code,
                serial_number=serial_number,
                owner_type=owner_type,
                owner_name=owner_name,
                owner_email=owner_email,
                owner_phone=owner_phone,
                owner_purchase_id=owner_purchase_id,
                owner_sale_id=owner_sale_id,
                product_id=product_id,
            )
            self._coupons[code] = coupon
        return coupon

    def get_coupon(self, code: str) -> Optional[Coupon]:
        self._ensure_coupons_loaded()
        return self._coupons.get(code)

    def get_coupons_for_purchase(self, purchase_id: str) -> list[Coupon]:
        self._ensure_coupons_loaded()
        return [c for c in self._coupons.values() if c.owner_purchase_id == purchase_id]

    # =========================================================================
    # Notification Log Operations
    # =========================================================================

    def create_notification_log(
        self,
        channel: Channel,
        recipient: str,
        content: Optional[str] = None,
        subject: Optional[str] = None,
        template_key: Optional[str] = None,
        template_data: Optional[dict[str, str]] = None,
        related_purchase_id: Optional[str] = None,
    ) -> NotificationLogEntry:
        """Queue a send attempt with status PENDING."""
        entry = NotificationLogEntry(
            id=str(uuid4()),
            channel=channel,
            recipient=recipient,
            subject=subject,
            content=content,
            template_key=template_key,
            template_data=template_data or {},
            related_purchase_id=related_purchase_id,
        )
        with self._lock:
            self._ensure_notification_log_loaded()
            self._notification_log[entry.id] = entry
        return entry

    def get_notification_log(self, entry_id: str) -> Optional[NotificationLogEntry]:
        self._ensure_notification_log_loaded()
        return self._notification_log.get(entry_id)

    def get_notifications_for_purchase(self, purchase_id: str) -> list[NotificationLogEntry]:
        self._ensure_notification_log_loaded()
        return [
            n for n in self._notification_log.values()
            if n.related_purchase_id == purchase_id
        ]

    def get_pending_notifications(self, purchase_id: Optional[str] = None) -> list[NotificationLogEntry]:
        """PENDING entries, oldest first, optionally for one purchase."""
        self._ensure_notification_log_loaded()
        pending = [
            n for n in self._notification_log.values()
            if n.status == NotificationStatus.PENDING
            and (purchase_id is None or n.related_purchase_id == purchase_id)
        ]
        return sorted(pending, key=lambda n: n.created_at)

    def finish_notification(
        self,
        entry_id: str,
        status: NotificationStatus,
        error_message: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Optional[NotificationLogEntry]:
        """
        Write the terminal status of a send attempt.

        SENT and SKIPPED stamp sent_at. FAILED bumps retry_count, which only
        counts attempts: nothing here schedules another one.

        Only PENDING and FAILED entries can be finished. A SENT or SKIPPED
        entry is returned unchanged.
        """
        if status == NotificationStatus.PENDING:
            raise ValueError("finish_notification needs a terminal status")

        with self._lock:
            self._ensure_notification_log_loaded()
            entry = self._notification_log.get(entry_id)
            if entry is None:
                logger.warning(f"[LOG] Notification log entry not found: {entry_id}")
                return None
            if entry.status in FINAL_NOTIFICATION_STATUSES:
                logger.warning(
                    f"[LOG] Notification {entry_id} is already {entry.status}, not overwriting with {status.value}"
                )
                return entry

            update = {"status": status, "error_message": error_message}
            if status in (NotificationStatus.SENT, NotificationStatus.SKIPPED):
                update["sent_at"] = utcnow()
            if status == NotificationStatus.FAILED:
                update["retry_count"] = entry.retry_count + 1
            if content is not None:
                update["content"] = content

            updated = NotificationLogEntry(**{**entry.model_dump(), **update})
            self._notification_log[entry_id] = updated
            return updated

    # =========================================================================
    # Templates and Settings
    # =========================================================================

    def find_template(self, template_key: str, channel: Channel) -> Optional[NotificationTemplate]:
        """Active template matching key and channel, if any."""
        self._ensure_templates_loaded()
        for template in self._templates:
            if (
                template.template_key == template_key
                and template.channel == channel
                and template.is_active
            ):
                return template
        return None

    def get_settings_map(self) -> dict[str, str]:
        """The settings table as a flat key/value mapping."""
        self._ensure_settings_loaded()
        return dict(self._settings)

    def put_setting(self, key: str, value: str) -> None:
        """Upsert a settings row (admin settings screen)."""
        with self._lock:
            self._ensure_settings_loaded()
            self._settings[key] = value

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def reload(self):
        """
        Force reload all data from JSON files.

        Drops every in-memory write.
        """
        with self._lock:
            self._products = None
            self._purchases = None
            self._pool = None
            self._assignments = None
            self._coupons = None
            self._serials = None
            self._notification_log = None
            self._templates = None
            self._settings = None


# Module-level singleton for convenience
# In tests, create a new DataStore instance with test fixtures
_default_store: Optional[DataStore] = None


def get_data_store() -> DataStore:
    """Get the default data store singleton."""
    global _default_store
    if _default_store is None:
        from campaign.settings import get_env_secrets

        data_dir = get_env_secrets().data_dir
        _default_store = DataStore(Path(data_dir) if data_dir else None)
    return _default_store


def reset_data_store(store: Optional[DataStore] = None) -> Optional[DataStore]:
    """Replace the singleton (for testing)."""
    global _default_store
    _default_store = store
    return _default_store
