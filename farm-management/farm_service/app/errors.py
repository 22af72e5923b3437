"""
Errors raised by the farm service.

Every error carries a user-facing message and the HTTP status the API
answers with; main.py turns them into {"error": ...} responses.
"""

# Substrings that identify a storage failure caused by connectivity rather
# than by the request itself.
NETWORK_ERROR_MARKERS = (
    "failed to fetch",
    "unavailable",
    "network",
    "offline",
    "connection refused",
    "could not connect",
)


class FarmServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(FarmServiceError):
    """A required field is missing or a value is invalid."""
    status_code = 400

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field

    @classmethod
    def missing(cls, field: str) -> "ValidationError":
        return cls(f"Missing required field: {field}", field=field)

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class UnknownUserError(FarmServiceError):
    status_code = 401


class PermissionDeniedError(FarmServiceError):
    status_code = 403


class NotFoundError(FarmServiceError):
    status_code = 404


class InsufficientStockError(FarmServiceError):
    status_code = 409

    def __init__(self, item: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for {item}: requested {requested}, available {available}"
        )
        self.item = item
        self.requested = requested
        self.available = available


class TransferStateError(FarmServiceError):
    """The transfer already left the pending state."""
    status_code = 409

    def __init__(self, transfer_id: int, status: str, action: str):
        super().__init__(f"Transfer {transfer_id} is {status} and cannot be {action}")
        self.transfer_id = transfer_id
        self.status = status


class WorkerConflictError(FarmServiceError):
    """The worker is already active in another farm."""
    status_code = 409

    def __init__(self, worker, ferme_id: str, ferme_name: str, recipients: list, notification_sent: bool = False):
        super().__init__(
            f"Worker {worker.nom} (CIN: {worker.cin}) is already active in {ferme_name}"
        )
        self.worker = worker
        self.ferme_id = ferme_id
        self.ferme_name = ferme_name
        self.recipients = recipients
        self.notification_sent = notification_sent

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["conflict"] = {
            "worker_id": self.worker.id,
            "worker_name": self.worker.nom,
            "cin": self.worker.cin,
            "date_entree": self.worker.date_entree.isoformat() if self.worker.date_entree else None,
            "ferme_id": self.ferme_id,
            "ferme_name": self.ferme_name,
            "recipients": self.recipients,
            "notification_sent": self.notification_sent,
        }
        return data


class ConnectivityError(FarmServiceError):
    status_code = 503

    def __init__(self, message: str = "Connection problem. Please check your connection and try again."):
        super().__init__(message)


def is_connectivity_error(exc: BaseException) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in NETWORK_ERROR_MARKERS)
