import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import settings
from .database import transaction
from .errors import NotFoundError, ValidationError
from .fermes import get_ferme_name, require_ferme
from .models import StockItem, User, utcnow

logger = logging.getLogger(__name__)


def _check_quantity(quantity) -> None:
    if quantity is None:
        raise ValidationError.missing("quantity")
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative", field="quantity")


def get_stock(db: Session, stock_id: int) -> StockItem:
    stock = db.get(StockItem, stock_id)
    if stock is None:
        raise NotFoundError(f"Stock {stock_id} not found")
    return stock


def list_stocks(db: Session, ferme_id: str = None, search: str = None):
    query = db.query(StockItem)
    if ferme_id:
        query = query.filter(StockItem.secteur_id == ferme_id)
    if search:
        query = query.filter(func.lower(StockItem.item).contains(search.lower()))
    return query.order_by(StockItem.id).all()


def add_or_update_stock(
    db: Session,
    actor: User,
    item: str = None,
    quantity: int = None,
    notes: str = None,
    ferme_id: str = None,
) -> StockItem:
    """
    Adds stock for an item at a farm (upsert operation).
    - If the farm already holds the item, quantity is added.
    - Otherwise a new record is created.

    Elevated callers pick the farm (the central depot by default); everyone
    else always stocks their own farm.
    """
    if not item or not item.strip():
        raise ValidationError.missing("item")
    _check_quantity(quantity)
    item = item.strip()

    if actor.has_elevated_access:
        target = ferme_id or settings.CENTRAL_FERME_ID
    else:
        target = actor.ferme_id
    if not target:
        raise ValidationError.missing("ferme_id")

    with transaction(db):
        require_ferme(db, target)
        stock = (
            db.query(StockItem)
            .filter(StockItem.secteur_id == target, StockItem.item == item)
            .with_for_update()
            .first()
        )
        if stock:
            stock.quantity += quantity
            if notes:
                stock.notes = notes
            stock.last_updated = utcnow()
        else:
            stock = StockItem(
                item=item,
                quantity=quantity,
                unit=settings.DEFAULT_UNIT,
                category=settings.DEFAULT_CATEGORY,
                secteur_id=target,
                secteur_name=get_ferme_name(db, target),
                notes=notes,
                last_updated=utcnow(),
            )
            db.add(stock)

    db.refresh(stock)
    logger.info("Stock %s at %s is now %d", stock.item, stock.secteur_id, stock.quantity)
    return stock


def edit_stock(db: Session, stock_id: int, item: str = None, quantity: int = None, notes: str = None) -> StockItem:
    if not item or not item.strip():
        raise ValidationError.missing("item")
    _check_quantity(quantity)
    item = item.strip()

    with transaction(db):
        stock = get_stock(db, stock_id)
        if item != stock.item:
            clash = (
                db.query(StockItem.id)
                .filter(StockItem.secteur_id == stock.secteur_id, StockItem.item == item)
                .first()
            )
            if clash:
                raise ValidationError(f"{item} already exists in this farm", field="item")
        stock.item = item
        stock.quantity = quantity
        stock.notes = notes
        stock.last_updated = utcnow()

    db.refresh(stock)
    return stock


def delete_stock(db: Session, stock_id: int) -> None:
    with transaction(db):
        db.delete(get_stock(db, stock_id))
    logger.info("Stock %s deleted", stock_id)
