from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Integer, String, Text, UniqueConstraint
from .database import Base # Import the Base class from our database setup

# Transfer statuses. `confirmed` and `in_transit` exist in stored data but
# no operation moves a transfer into them.
PENDING = "pending"
CONFIRMED = "confirmed"
IN_TRANSIT = "in_transit"
DELIVERED = "delivered"
REJECTED = "rejected"
CANCELLED = "cancelled"

TRANSFER_STATUSES = (PENDING, CONFIRMED, IN_TRANSIT, DELIVERED, REJECTED, CANCELLED)
TERMINAL_STATUSES = frozenset({DELIVERED, REJECTED, CANCELLED})

PRIORITIES = ("low", "medium", "high", "urgent")

# Notification statuses.
UNREAD = "unread"
ACKNOWLEDGED = "acknowledged"

# Worker statuses.
ACTIF = "actif"
INACTIF = "inactif"

SUPERADMIN = "superadmin"


def utcnow():
    return datetime.now(timezone.utc)


# A farm ("ferme"): owns stock and workers.
class Ferme(Base):
    __tablename__ = "fermes"

    id = Column(String, primary_key=True)
    nom = Column(String, nullable=False)
    admins = Column(JSON, default=list) # User ids of the farm's administrators.


class User(Base):
    __tablename__ = "users"

    uid = Column(String, primary_key=True)
    nom = Column(String)
    email = Column(String)
    role = Column(String, default="user") # "superadmin", "admin" or "user".
    ferme_id = Column(String, index=True) # Farm the user belongs to.
    has_all_farms_access = Column(Boolean, default=False)

    @property
    def has_elevated_access(self):
        return self.role == SUPERADMIN or bool(self.has_all_farms_access)

    @property
    def display_name(self):
        return self.nom or self.email or ""


# The current quantity of one item held by one farm.
class StockItem(Base):
    __tablename__ = "stocks"
    __table_args__ = (UniqueConstraint("secteur_id", "item", name="uq_stock_farm_item"),)

    id = Column(Integer, primary_key=True, index=True)
    item = Column(String, nullable=False) # Article name.
    quantity = Column(Integer, nullable=False, default=0) # Never negative.
    unit = Column(String)
    category = Column(String)
    secteur_id = Column(String, nullable=False, index=True) # Owning farm id.
    secteur_name = Column(String)
    notes = Column(Text)
    last_updated = Column(DateTime(timezone=True), default=utcnow)


class StockTransfer(Base):
    __tablename__ = "stock_transfers"

    id = Column(Integer, primary_key=True, index=True)
    tracking_number = Column(String, index=True) # Human-readable, e.g. "TRF-1718000000000".
    from_ferme_id = Column(String, index=True)
    from_ferme_name = Column(String)
    to_ferme_id = Column(String, index=True)
    to_ferme_name = Column(String)
    stock_item_id = Column(Integer) # Source stock record at creation time.
    item = Column(String)
    quantity = Column(Integer)
    unit = Column(String)
    status = Column(String, default=PENDING, index=True)
    priority = Column(String, default="medium")
    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    confirmed_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))
    rejected_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))

    transferred_by = Column(String)
    transferred_by_name = Column(String)
    received_by = Column(String)
    received_by_name = Column(String)
    rejected_by = Column(String)
    rejected_by_name = Column(String)
    rejection_reason = Column(Text)
    cancelled_by = Column(String)
    cancelled_by_name = Column(String)


# Advisory record telling a farm about a transfer; not authoritative.
class TransferNotification(Base):
    __tablename__ = "transfer_notifications"

    id = Column(Integer, primary_key=True, index=True)
    transfer_id = Column(Integer, index=True)
    type = Column(String, default="incoming_transfer")
    from_ferme_id = Column(String)
    from_ferme_name = Column(String)
    to_ferme_id = Column(String, index=True)
    to_ferme_name = Column(String)
    item = Column(String)
    quantity = Column(Integer)
    unit = Column(String)
    message = Column(Text)
    status = Column(String, default=UNREAD)
    priority = Column(String, default="medium")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    acknowledged_at = Column(DateTime(timezone=True))


class Worker(Base):
    __tablename__ = "workers"

    id = Column(Integer, primary_key=True, index=True)
    nom = Column(String, nullable=False)
    cin = Column(String, nullable=False, index=True) # National identity card number.
    ferme_id = Column(String, index=True)
    chambre = Column(String)
    date_entree = Column(Date)
    date_sortie = Column(Date) # Set when the worker leaves the farm.
    statut = Column(String, default=ACTIF)

    @property
    def is_active(self):
        return self.statut == ACTIF and self.date_sortie is None
