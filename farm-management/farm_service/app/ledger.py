"""
Stock transfers between farms.

A transfer is created `pending` and leaves that state exactly once:

    pending --confirm--> delivered
    pending --reject----> rejected
    pending --cancel----> cancelled

Each transition is a conditional UPDATE on `status = 'pending'` run inside
the same transaction as its other writes, so a transfer can never be applied
twice and a failed confirm leaves no partial stock movement behind.
Notifications to farm admins are dispatched only after the commit.
"""
import logging
import time

from sqlalchemy import func
from sqlalchemy.orm import Session

from .database import transaction
from .errors import (
    InsufficientStockError,
    NotFoundError,
    PermissionDeniedError,
    TransferStateError,
    ValidationError,
)
from .fermes import get_ferme_name, notification_recipients, require_ferme
from .models import (
    ACKNOWLEDGED,
    CANCELLED,
    DELIVERED,
    PENDING,
    PRIORITIES,
    REJECTED,
    UNREAD,
    StockItem,
    StockTransfer,
    TransferNotification,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)


def generate_tracking_number() -> str:
    return f"TRF-{int(time.time() * 1000)}"


def resolve_source_ferme(actor: User, source: StockItem) -> str:
    """
    Elevated callers move stock from wherever the record lives; ordinary
    callers always send from their own farm.
    """
    if actor.has_elevated_access:
        return source.secteur_id
    if not actor.ferme_id:
        raise ValidationError.missing("ferme_id")
    return actor.ferme_id


def find_stock(db: Session, ferme_id: str, item: str, lock: bool = False):
    query = db.query(StockItem).filter(StockItem.secteur_id == ferme_id, StockItem.item == item)
    if lock:
        query = query.with_for_update()
    return query.first()


def get_transfer(db: Session, transfer_id: int) -> StockTransfer:
    transfer = db.get(StockTransfer, transfer_id)
    if transfer is None:
        raise NotFoundError(f"Transfer {transfer_id} not found")
    return transfer


def list_transfers(db: Session, status: str = None, ferme_id: str = None, search: str = None):
    query = db.query(StockTransfer)
    if status:
        query = query.filter(StockTransfer.status == status)
    if ferme_id:
        query = query.filter(
            (StockTransfer.from_ferme_id == ferme_id) | (StockTransfer.to_ferme_id == ferme_id)
        )
    if search:
        query = query.filter(func.lower(StockTransfer.item).contains(search.lower()))
    return query.order_by(StockTransfer.created_at.desc(), StockTransfer.id.desc()).all()


def list_open_notifications(db: Session, ferme_id: str):
    return (
        db.query(TransferNotification)
        .filter(
            TransferNotification.to_ferme_id == ferme_id,
            TransferNotification.status != ACKNOWLEDGED,
        )
        .order_by(TransferNotification.created_at.desc(), TransferNotification.id.desc())
        .all()
    )


def create_transfer(
    db: Session,
    actor: User,
    stock_item_id: int = None,
    to_ferme_id: str = None,
    quantity: int = None,
    priority: str = "medium",
    notes: str = None,
    notifier=None,
) -> StockTransfer:
    """
    Opens a pending transfer of `quantity` units out of a stock record and
    leaves an unread notification for the destination farm.

    Nothing is written when validation fails or the source holds less than
    the requested quantity.
    """
    for field, value in (("stock_item_id", stock_item_id), ("to_ferme_id", to_ferme_id), ("quantity", quantity)):
        if value is None or value == "":
            raise ValidationError.missing(field)
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than zero", field="quantity")
    priority = priority or "medium"
    if priority not in PRIORITIES:
        raise ValidationError(f"Unknown priority: {priority}", field="priority")

    with transaction(db):
        source = db.get(StockItem, stock_item_id)
        if source is None:
            raise NotFoundError(f"Source stock {stock_item_id} not found")
        if source.quantity < quantity:
            raise InsufficientStockError(source.item, quantity, source.quantity)

        from_ferme_id = resolve_source_ferme(actor, source)
        if from_ferme_id == to_ferme_id:
            raise ValidationError("Source and destination farms must differ", field="to_ferme_id")
        require_ferme(db, to_ferme_id)

        from_name = get_ferme_name(db, from_ferme_id)
        to_name = get_ferme_name(db, to_ferme_id)

        transfer = StockTransfer(
            tracking_number=generate_tracking_number(),
            from_ferme_id=from_ferme_id,
            from_ferme_name=from_name,
            to_ferme_id=to_ferme_id,
            to_ferme_name=to_name,
            stock_item_id=source.id,
            item=source.item,
            quantity=quantity,
            unit=source.unit,
            status=PENDING,
            priority=priority,
            notes=notes,
            transferred_by=actor.uid,
            transferred_by_name=actor.display_name,
            created_at=utcnow(),
        )
        db.add(transfer)
        db.flush()

        db.add(TransferNotification(
            transfer_id=transfer.id,
            type="incoming_transfer",
            from_ferme_id=from_ferme_id,
            from_ferme_name=from_name,
            to_ferme_id=to_ferme_id,
            to_ferme_name=to_name,
            item=source.item,
            quantity=quantity,
            unit=source.unit,
            message=f"New incoming transfer: {source.item} ({quantity} {source.unit}) from {from_name}",
            status=UNREAD,
            priority=priority,
            created_at=utcnow(),
        ))

    logger.info(
        "Transfer %s created: %d x %s from %s to %s",
        transfer.tracking_number, quantity, transfer.item, from_ferme_id, to_ferme_id,
    )
    _notify(
        db, notifier, transfer, transfer.to_ferme_id, actor,
        type="incoming_transfer",
        title="Incoming transfer",
        message=f"{transfer.from_ferme_name} is sending {transfer.quantity} {transfer.unit} of {transfer.item}",
    )
    return transfer


def confirm_transfer(db: Session, transfer_id: int, actor: User, notifier=None) -> StockTransfer:
    """
    Receives a pending transfer at the destination farm.

    In one transaction: marks it delivered, adds the quantity to the
    destination's record for the item (creating it if needed), takes it off
    the source record (deleting it once empty) and acknowledges the
    destination's notifications for that item.
    """
    with transaction(db):
        transfer = get_transfer(db, transfer_id)
        _require_pending(transfer, "confirmed")
        if actor.ferme_id != transfer.to_ferme_id:
            raise PermissionDeniedError("Only the destination farm can confirm this transfer")

        now = utcnow()
        _claim(db, transfer, "confirmed", {
            StockTransfer.status: DELIVERED,
            StockTransfer.confirmed_at: now,
            StockTransfer.delivered_at: now,
            StockTransfer.received_by: actor.uid,
            StockTransfer.received_by_name: actor.display_name,
        })

        source = find_stock(db, transfer.from_ferme_id, transfer.item, lock=True)
        available = source.quantity if source else 0
        if available < transfer.quantity:
            raise InsufficientStockError(transfer.item, transfer.quantity, available)

        destination = find_stock(db, transfer.to_ferme_id, transfer.item, lock=True)
        if destination:
            destination.quantity += transfer.quantity
            destination.last_updated = now
        else:
            db.add(StockItem(
                item=transfer.item,
                quantity=transfer.quantity,
                unit=transfer.unit,
                category=source.category,
                secteur_id=transfer.to_ferme_id,
                secteur_name=transfer.to_ferme_name,
                last_updated=now,
            ))

        remaining = source.quantity - transfer.quantity
        if remaining <= 0:
            db.delete(source)
        else:
            source.quantity = remaining
            source.last_updated = now

        _acknowledge_notifications(db, transfer, now)

    logger.info("Transfer %s delivered to %s", transfer.tracking_number, transfer.to_ferme_id)
    _notify(
        db, notifier, transfer, transfer.from_ferme_id, actor,
        type="transfer_delivered",
        title="Transfer delivered",
        message=f"{transfer.to_ferme_name} received {transfer.quantity} {transfer.unit} of {transfer.item}",
    )
    return transfer


def reject_transfer(db: Session, transfer_id: int, actor: User, reason: str = None, notifier=None) -> StockTransfer:
    """Refuses a pending transfer at the destination farm. Stock is untouched."""
    if not reason or not reason.strip():
        raise ValidationError.missing("reason")

    with transaction(db):
        transfer = get_transfer(db, transfer_id)
        _require_pending(transfer, "rejected")
        if actor.ferme_id != transfer.to_ferme_id:
            raise PermissionDeniedError("Only the destination farm can reject this transfer")

        now = utcnow()
        _claim(db, transfer, "rejected", {
            StockTransfer.status: REJECTED,
            StockTransfer.rejected_at: now,
            StockTransfer.rejected_by: actor.uid,
            StockTransfer.rejected_by_name: actor.display_name,
            StockTransfer.rejection_reason: reason.strip(),
        })
        _acknowledge_notifications(db, transfer, now)

    logger.info("Transfer %s rejected by %s", transfer.tracking_number, actor.uid)
    _notify(
        db, notifier, transfer, transfer.from_ferme_id, actor,
        type="transfer_rejected",
        title="Transfer rejected",
        message=f"{transfer.to_ferme_name} rejected {transfer.quantity} {transfer.unit} of {transfer.item}: {transfer.rejection_reason}",
    )
    return transfer


def cancel_transfer(db: Session, transfer_id: int, actor: User, notifier=None) -> StockTransfer:
    """Withdraws a pending transfer from the sending side. Stock is untouched."""
    with transaction(db):
        transfer = get_transfer(db, transfer_id)
        _require_pending(transfer, "cancelled")
        sender = actor.ferme_id == transfer.from_ferme_id or actor.has_elevated_access
        if not sender or actor.ferme_id == transfer.to_ferme_id:
            raise PermissionDeniedError("Only the source farm can cancel this transfer")

        _claim(db, transfer, "cancelled", {
            StockTransfer.status: CANCELLED,
            StockTransfer.cancelled_at: utcnow(),
            StockTransfer.cancelled_by: actor.uid,
            StockTransfer.cancelled_by_name: actor.display_name,
        })

    logger.info("Transfer %s cancelled by %s", transfer.tracking_number, actor.uid)
    _notify(
        db, notifier, transfer, transfer.to_ferme_id, actor,
        type="transfer_cancelled",
        title="Transfer cancelled",
        message=f"{transfer.from_ferme_name} cancelled the transfer of {transfer.quantity} {transfer.unit} of {transfer.item}",
    )
    return transfer


def _require_pending(transfer: StockTransfer, action: str) -> None:
    if transfer.status != PENDING:
        logger.warning("Refused: transfer %s is %s, cannot be %s", transfer.id, transfer.status, action)
        raise TransferStateError(transfer.id, transfer.status, action)


def _claim(db: Session, transfer: StockTransfer, action: str, values: dict) -> None:
    # Compare-and-swap on status; a concurrent transition makes this match no row.
    claimed = (
        db.query(StockTransfer)
        .filter(StockTransfer.id == transfer.id, StockTransfer.status == PENDING)
        .update(values, synchronize_session=False)
    )
    if claimed != 1:
        current = db.query(StockTransfer.status).filter(StockTransfer.id == transfer.id).scalar()
        raise TransferStateError(transfer.id, current, action)


def _acknowledge_notifications(db: Session, transfer: StockTransfer, now) -> int:
    return (
        db.query(TransferNotification)
        .filter(
            TransferNotification.to_ferme_id == transfer.to_ferme_id,
            TransferNotification.item == transfer.item,
            TransferNotification.status != ACKNOWLEDGED,
        )
        .update(
            {TransferNotification.status: ACKNOWLEDGED, TransferNotification.acknowledged_at: now},
            synchronize_session=False,
        )
    )


def _notify(db, notifier, transfer, ferme_id, actor, **payload):
    if notifier is None:
        return
    notifier.notify_admins(
        notification_recipients(db, ferme_id, exclude_uid=actor.uid),
        ferme_id,
        priority=transfer.priority,
        action_data={
            "transfer_id": transfer.id,
            "tracking_number": transfer.tracking_number,
            "item": transfer.item,
            "quantity": transfer.quantity,
        },
        **payload,
    )
