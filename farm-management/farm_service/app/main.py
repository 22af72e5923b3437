# --- Imports ---
import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session # For database session management

# Internal imports from sibling modules
from . import aggregator, inventory, ledger, workers
from .database import Base, engine, get_db, transaction
from .errors import FarmServiceError, UnknownUserError, ValidationError, is_connectivity_error
from .fermes import ferme_names
from .logger import setup_logger
from .messaging.bus import NotificationDispatcher, get_notifier
from .models import Ferme, User
from .schemas import (
    AggregatedStock,
    FermeCreate,
    FermeOut,
    NotificationOut,
    StockCreate,
    StockOut,
    StockUpdate,
    TransferCreate,
    TransferOut,
    TransferReject,
    UserCreate,
    UserOut,
    WorkerCheck,
    WorkerCreate,
    WorkerExit,
    WorkerOut,
)

setup_logger()
logger = logging.getLogger(__name__)

# --- Database Initialization ---
# Create database tables defined in models.py if they don't exist
Base.metadata.create_all(bind=engine)

# --- App Instance ---
app = FastAPI(title="Farm service")


# --- Error Handlers ---
@app.exception_handler(FarmServiceError)
async def handle_farm_error(request: Request, exc: FarmServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def handle_storage_error(request: Request, exc: SQLAlchemyError):
    if is_connectivity_error(exc):
        return JSONResponse(
            status_code=503,
            content={"error": "Connection problem. Please check your connection and try again."},
        )
    logger.error("Storage error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Could not complete the operation"})


# --- Dependencies ---
def get_actor(x_user_id: Optional[str] = Header(None), db: Session = Depends(get_db)) -> User:
    """Resolves the calling user from the X-User-Id header."""
    if not x_user_id:
        raise UnknownUserError("Missing X-User-Id header")
    user = db.get(User, x_user_id)
    if user is None:
        raise UnknownUserError(f"Unknown user {x_user_id}")
    return user


# --- Endpoints ---
@app.get("/")
def root():
    """Health check endpoint to confirm the farm service is operational."""
    return {"message": "Farm service is running"}


@app.get("/api/v1/fermes", response_model=List[FermeOut])
def list_fermes(db: Session = Depends(get_db)):
    return db.query(Ferme).order_by(Ferme.nom).all()


@app.post("/api/v1/fermes", response_model=FermeOut, status_code=201)
def create_ferme(req: FermeCreate, db: Session = Depends(get_db)):
    if db.get(Ferme, req.id) is not None:
        raise ValidationError(f"Farm {req.id} already exists", field="id")
    ferme = Ferme(id=req.id, nom=req.nom, admins=req.admins)
    with transaction(db):
        db.add(ferme)
    db.refresh(ferme)
    return ferme


@app.post("/api/v1/users", response_model=UserOut, status_code=201)
def create_user(req: UserCreate, db: Session = Depends(get_db)):
    if db.get(User, req.uid) is not None:
        raise ValidationError(f"User {req.uid} already exists", field="uid")
    user = User(**req.model_dump())
    with transaction(db):
        db.add(user)
    db.refresh(user)
    return user


# --- Stock ---
@app.get("/api/v1/stock/items", response_model=List[StockOut])
def list_stock_items(ferme_id: Optional[str] = None, search: Optional[str] = None, db: Session = Depends(get_db)):
    """Retrieves stock records, optionally for one farm and/or matching a name."""
    return inventory.list_stocks(db, ferme_id=ferme_id, search=search)


@app.post("/api/v1/stock/items", response_model=StockOut)
def add_or_update_item(
    req: StockCreate, db: Session = Depends(get_db), actor: User = Depends(get_actor)
):
    """
    Adds new stock for an item or tops up the existing record (upsert).
    """
    return inventory.add_or_update_stock(db, actor, **req.model_dump())


@app.get("/api/v1/stock/items/{stock_id}", response_model=StockOut)
def get_item(stock_id: int, db: Session = Depends(get_db)):
    return inventory.get_stock(db, stock_id)


@app.put("/api/v1/stock/items/{stock_id}", response_model=StockOut, dependencies=[Depends(get_actor)])
def edit_item(stock_id: int, req: StockUpdate, db: Session = Depends(get_db)):
    return inventory.edit_stock(db, stock_id, **req.model_dump())


@app.delete("/api/v1/stock/items/{stock_id}", dependencies=[Depends(get_actor)])
def delete_item(stock_id: int, db: Session = Depends(get_db)):
    inventory.delete_stock(db, stock_id)
    return {"status": "deleted", "id": stock_id}


@app.get("/api/v1/stock/aggregate", response_model=List[AggregatedStock])
def aggregate_stock(ferme_id: Optional[str] = None, search: Optional[str] = None, db: Session = Depends(get_db)):
    """Total quantity per article across farms, with each farm's share."""
    stocks = inventory.list_stocks(db, ferme_id=ferme_id)
    return aggregator.aggregate_stocks(stocks, ferme_names(db), search=search)


# --- Transfers ---
@app.get("/api/v1/transfers", response_model=List[TransferOut])
def list_transfers(
    status: Optional[str] = None,
    ferme_id: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return ledger.list_transfers(db, status=status, ferme_id=ferme_id, search=search)


@app.post("/api/v1/transfers", response_model=TransferOut, status_code=201)
def create_transfer(
    req: TransferCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return ledger.create_transfer(db, actor, notifier=notifier, **req.model_dump())


# Declared before /{transfer_id} so "notifications" is not read as an id.
@app.get("/api/v1/transfers/notifications", response_model=List[NotificationOut])
def list_notifications(db: Session = Depends(get_db), actor: User = Depends(get_actor)):
    """Unacknowledged transfer notifications addressed to the caller's farm."""
    return ledger.list_open_notifications(db, actor.ferme_id)


@app.get("/api/v1/transfers/{transfer_id}", response_model=TransferOut)
def get_transfer(transfer_id: int, db: Session = Depends(get_db)):
    return ledger.get_transfer(db, transfer_id)


@app.post("/api/v1/transfers/{transfer_id}/confirm", response_model=TransferOut)
def confirm_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return ledger.confirm_transfer(db, transfer_id, actor, notifier=notifier)


@app.post("/api/v1/transfers/{transfer_id}/reject", response_model=TransferOut)
def reject_transfer(
    transfer_id: int,
    req: TransferReject,
    db: Session = Depends(get_db),
    actor: User = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return ledger.reject_transfer(db, transfer_id, actor, reason=req.reason, notifier=notifier)


@app.post("/api/v1/transfers/{transfer_id}/cancel", response_model=TransferOut)
def cancel_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return ledger.cancel_transfer(db, transfer_id, actor, notifier=notifier)


# --- Workers ---
@app.get("/api/v1/workers/check", response_model=WorkerCheck)
def check_worker(cin: str, ferme_id: str, db: Session = Depends(get_db), actor: User = Depends(get_actor)):
    """Tells whether a CIN is already active in another farm."""
    found = workers.check_worker(db, cin, ferme_id, requester=actor)
    if not found["conflict"]:
        return WorkerCheck(conflict=False)
    return WorkerCheck(
        conflict=True,
        worker=WorkerOut.model_validate(found["worker"]),
        ferme_id=found["ferme_id"],
        ferme_name=found["ferme_name"],
        recipients=found["recipients"],
    )


@app.post("/api/v1/workers", response_model=WorkerOut, status_code=201)
def register_worker(
    req: WorkerCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return workers.register_worker(db, actor, notifier=notifier, **req.model_dump())


@app.post("/api/v1/workers/{worker_id}/exit", response_model=WorkerOut)
def record_worker_exit(
    worker_id: int,
    req: WorkerExit,
    db: Session = Depends(get_db),
    actor: User = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return workers.record_exit(db, worker_id, actor, notifier=notifier, **req.model_dump())
