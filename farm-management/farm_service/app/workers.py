"""
Worker registration with cross-farm duplicate detection.

A worker (identified by CIN) may be active in only one farm at a time.
Registering them elsewhere is blocked until their current farm records an
exit date; that farm's admins are told someone else is trying.
"""
import logging
from datetime import date

from sqlalchemy.orm import Session

from .database import transaction
from .errors import NotFoundError, PermissionDeniedError, ValidationError, WorkerConflictError
from .fermes import get_ferme_name, notification_recipients, require_ferme
from .models import ACTIF, INACTIF, User, Worker

logger = logging.getLogger(__name__)


def normalize_cin(cin: str) -> str:
    return (cin or "").strip().upper()


def _active_with_cin(db: Session, cin: str):
    return db.query(Worker).filter(
        Worker.cin == normalize_cin(cin),
        Worker.statut == ACTIF,
        Worker.date_sortie.is_(None),
    )


def find_active_worker(db: Session, cin: str, exclude_ferme_id: str = None):
    query = _active_with_cin(db, cin)
    if exclude_ferme_id is not None:
        query = query.filter(Worker.ferme_id != exclude_ferme_id)
    return query.order_by(Worker.id).first()


def check_worker(db: Session, cin: str, ferme_id: str, requester: User = None) -> dict:
    """Looks for the CIN active in a farm other than `ferme_id`."""
    existing = find_active_worker(db, cin, exclude_ferme_id=ferme_id)
    if existing is None:
        return {"conflict": False}
    return {
        "conflict": True,
        "worker": existing,
        "ferme_id": existing.ferme_id,
        "ferme_name": get_ferme_name(db, existing.ferme_id),
        "recipients": notification_recipients(
            db, existing.ferme_id, exclude_uid=requester.uid if requester else None
        ),
    }


def register_worker(
    db: Session,
    actor: User,
    nom: str = None,
    cin: str = None,
    ferme_id: str = None,
    chambre: str = None,
    date_entree: date = None,
    notifier=None,
) -> Worker:
    for field, value in (("nom", nom), ("cin", cin), ("ferme_id", ferme_id)):
        if not value or not str(value).strip():
            raise ValidationError.missing(field)
    cin = normalize_cin(cin)

    if _active_with_cin(db, cin).filter(Worker.ferme_id == ferme_id).first() is not None:
        raise ValidationError(f"Worker with CIN {cin} is already active in this farm", field="cin")

    found = check_worker(db, cin, ferme_id, requester=actor)
    if found["conflict"]:
        existing = found["worker"]
        logger.warning(
            "Blocked registration of CIN %s at %s: active at %s", cin, ferme_id, existing.ferme_id
        )
        sent = _notify_duplicate(db, notifier, existing, found, actor, ferme_id)
        raise WorkerConflictError(
            existing, found["ferme_id"], found["ferme_name"], found["recipients"], notification_sent=sent > 0
        )

    with transaction(db):
        require_ferme(db, ferme_id)
        worker = Worker(
            nom=nom.strip(),
            cin=cin,
            ferme_id=ferme_id,
            chambre=chambre,
            date_entree=date_entree or date.today(),
            statut=ACTIF,
        )
        db.add(worker)

    db.refresh(worker)
    logger.info("Worker %s registered at %s", worker.cin, worker.ferme_id)
    return worker


def record_exit(
    db: Session,
    worker_id: int,
    actor: User,
    date_sortie: date = None,
    requester_ferme_id: str = None,
    notifier=None,
) -> Worker:
    """
    Marks a worker as having left their farm. When another farm was waiting
    to register them, its admins are told the worker is now available.
    """
    if date_sortie is None:
        raise ValidationError.missing("date_sortie")

    with transaction(db):
        worker = db.get(Worker, worker_id)
        if worker is None:
            raise NotFoundError(f"Worker {worker_id} not found")
        if actor.ferme_id != worker.ferme_id and not actor.has_elevated_access:
            raise PermissionDeniedError("Only the worker's farm can record an exit date")
        worker.date_sortie = date_sortie
        worker.statut = INACTIF

    db.refresh(worker)
    logger.info("Worker %s left %s on %s", worker.cin, worker.ferme_id, date_sortie)

    if notifier is not None and requester_ferme_id:
        ferme_name = get_ferme_name(db, worker.ferme_id)
        notifier.notify_admins(
            notification_recipients(db, requester_ferme_id, exclude_uid=actor.uid),
            requester_ferme_id,
            type="worker_exit_confirmed",
            title="Conflict resolved: worker available",
            message=(
                f"Worker {worker.nom} (CIN: {worker.cin}) is now available. "
                f"{ferme_name} recorded their exit date ({date_sortie.isoformat()}). "
                "You can now register them in your farm."
            ),
            priority="high",
            action_data={
                "worker_id": worker.id,
                "worker_name": worker.nom,
                "worker_cin": worker.cin,
                "action_required": "Worker available for registration",
                "action_url": f"/workers/add?prefill={worker.cin}",
            },
        )
    return worker


def _notify_duplicate(db, notifier, existing, found, actor, requester_ferme_id) -> int:
    if notifier is None or not found["recipients"]:
        return 0
    requester_name = get_ferme_name(db, requester_ferme_id)
    since = existing.date_entree.isoformat() if existing.date_entree else "an unknown date"
    return notifier.notify_admins(
        found["recipients"],
        existing.ferme_id,
        type="worker_duplicate",
        title="Attempt to register an active worker",
        message=(
            f"Worker {existing.nom} (CIN: {existing.cin}) has been active in your farm "
            f"\"{found['ferme_name']}\" since {since}. Someone from \"{requester_name}\" is trying "
            "to register them. Please check their status and add an exit date if they have left."
        ),
        priority="urgent",
        action_data={
            "worker_id": existing.id,
            "worker_name": existing.nom,
            "worker_cin": existing.cin,
            "requester_ferme_id": requester_ferme_id,
            "requester_ferme_name": requester_name,
            "requested_by": actor.uid,
            "action_required": "Add an exit date to the worker",
            "action_url": f"/workers?search={existing.cin}",
        },
    )
