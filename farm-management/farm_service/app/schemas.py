from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Request Models ---
# Required business fields are Optional: the services report
# a missing field with a ValidationError naming it.

class FermeCreate(BaseModel):
    """Pydantic model for registering a farm."""
    id: str
    nom: str
    admins: List[str] = Field(default_factory=list)


class UserCreate(BaseModel):
    uid: str
    nom: Optional[str] = None
    email: Optional[str] = None
    role: str = "user"
    ferme_id: Optional[str] = None
    has_all_farms_access: bool = False


class StockCreate(BaseModel):
    """Pydantic model for adding stock to a farm."""
    item: Optional[str] = None
    quantity: Optional[int] = None
    notes: Optional[str] = None
    ferme_id: Optional[str] = None


class StockUpdate(BaseModel):
    item: Optional[str] = None
    quantity: Optional[int] = None
    notes: Optional[str] = None


class TransferCreate(BaseModel):
    """Pydantic model for requesting a transfer between farms."""
    stock_item_id: Optional[int] = None
    to_ferme_id: Optional[str] = None
    quantity: Optional[int] = None
    priority: Optional[str] = "medium"
    notes: Optional[str] = None


class TransferReject(BaseModel):
    reason: Optional[str] = None


class WorkerCreate(BaseModel):
    nom: Optional[str] = None
    cin: Optional[str] = None
    ferme_id: Optional[str] = None
    chambre: Optional[str] = None
    date_entree: Optional[date] = None


class WorkerExit(BaseModel):
    date_sortie: Optional[date] = None
    # Farm that tried to register the worker and should hear they are free.
    requester_ferme_id: Optional[str] = None


# --- Response Models ---

class FermeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    nom: str
    admins: List[str] = Field(default_factory=list)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    uid: str
    nom: Optional[str] = None
    email: Optional[str] = None
    role: str
    ferme_id: Optional[str] = None
    has_all_farms_access: bool = False


class StockOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item: str
    quantity: int
    unit: Optional[str] = None
    category: Optional[str] = None
    secteur_id: str
    secteur_name: Optional[str] = None
    notes: Optional[str] = None
    last_updated: Optional[datetime] = None


class TransferOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tracking_number: str
    from_ferme_id: str
    from_ferme_name: Optional[str] = None
    to_ferme_id: str
    to_ferme_name: Optional[str] = None
    stock_item_id: Optional[int] = None
    item: str
    quantity: int
    unit: Optional[str] = None
    status: str
    priority: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    transferred_by: Optional[str] = None
    transferred_by_name: Optional[str] = None
    received_by: Optional[str] = None
    received_by_name: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_by_name: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_by_name: Optional[str] = None


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transfer_id: Optional[int] = None
    type: str
    from_ferme_id: str
    from_ferme_name: Optional[str] = None
    to_ferme_id: str
    to_ferme_name: Optional[str] = None
    item: str
    quantity: int
    unit: Optional[str] = None
    message: str
    status: str
    priority: str
    created_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None


class WorkerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    nom: str
    cin: str
    ferme_id: str
    chambre: Optional[str] = None
    date_entree: Optional[date] = None
    date_sortie: Optional[date] = None
    statut: str


class FarmShare(BaseModel):
    """One farm's contribution to an aggregated article."""
    farm_id: str
    farm_name: str
    quantity: int


class AggregatedStock(BaseModel):
    """Total quantity of one article across farms."""
    item: str
    total_quantity: int
    unit: Optional[str] = None
    farms: List[FarmShare]
    last_updated: Optional[datetime] = None


class WorkerCheck(BaseModel):
    conflict: bool
    worker: Optional[WorkerOut] = None
    ferme_id: Optional[str] = None
    ferme_name: Optional[str] = None
    recipients: List[str] = Field(default_factory=list)
