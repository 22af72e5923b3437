from sqlalchemy.orm import Session

from . import settings
from .errors import NotFoundError
from .models import Ferme, User, SUPERADMIN


def ferme_names(db: Session) -> dict:
    """Maps every farm id to its display name, central depot included."""
    names = {ferme.id: ferme.nom for ferme in db.query(Ferme).all()}
    names[settings.CENTRAL_FERME_ID] = settings.CENTRAL_FERME_NAME
    return names


def get_ferme_name(db: Session, ferme_id: str) -> str:
    # Unknown farms display as the central depot.
    if ferme_id == settings.CENTRAL_FERME_ID:
        return settings.CENTRAL_FERME_NAME
    ferme = db.get(Ferme, ferme_id) if ferme_id else None
    return ferme.nom if ferme else settings.CENTRAL_FERME_NAME


def require_ferme(db: Session, ferme_id: str) -> None:
    if ferme_id == settings.CENTRAL_FERME_ID:
        return
    if db.get(Ferme, ferme_id) is None:
        raise NotFoundError(f"Farm {ferme_id} not found")


def ferme_admins(db: Session, ferme_id: str) -> list:
    ferme = db.get(Ferme, ferme_id) if ferme_id else None
    return list(ferme.admins or []) if ferme else []


def notification_recipients(db: Session, ferme_id: str, exclude_uid: str = None) -> list:
    """
    Admins of a farm who should hear about an event there: everyone in
    the farm's admin list except `exclude_uid` and superadmins.
    """
    recipients = []
    for admin_id in ferme_admins(db, ferme_id):
        if admin_id == exclude_uid:
            continue
        admin = db.get(User, admin_id)
        if admin is not None and admin.role == SUPERADMIN:
            continue
        recipients.append(admin_id)
    return recipients
