from datetime import date

import pytest

from farm_service.app import workers
from farm_service.app.errors import NotFoundError, PermissionDeniedError, ValidationError, WorkerConflictError
from farm_service.app.models import ACTIF, INACTIF, Worker


@pytest.fixture
def worker_in_a(db, people):
    worker = Worker(nom="Said", cin="AB123456", ferme_id="A", date_entree=date(2024, 1, 15), statut=ACTIF)
    db.add(worker)
    db.commit()
    return worker


def test_register_new_worker(db, people):
    worker = workers.register_worker(db, people.admin_b, nom="Karim", cin=" cd987 ", ferme_id="B")

    assert worker.cin == "CD987"
    assert worker.statut == ACTIF
    assert worker.date_entree == date.today()


def test_register_requires_fields(db, people):
    with pytest.raises(ValidationError) as excinfo:
        workers.register_worker(db, people.admin_b, nom="Karim", cin="", ferme_id="B")

    assert excinfo.value.field == "cin"


def test_register_into_unknown_farm(db, people):
    with pytest.raises(NotFoundError):
        workers.register_worker(db, people.admin_b, nom="Karim", cin="CD987", ferme_id="Z")


def test_active_elsewhere_blocks_registration(db, people, worker_in_a, notifier, producer):
    with pytest.raises(WorkerConflictError) as excinfo:
        workers.register_worker(db, people.admin_b, nom="Said", cin="ab123456", ferme_id="B", notifier=notifier)

    conflict = excinfo.value
    assert conflict.worker.id == worker_in_a.id
    assert conflict.ferme_id == "A"
    assert conflict.ferme_name == "Ferme A"
    # Superadmins are never notification recipients.
    assert conflict.recipients == ["admin-a"]
    assert conflict.notification_sent is True
    assert db.query(Worker).count() == 1

    assert producer.routing_keys() == ["notification.worker_duplicate"]
    payload = producer.published[0][1]
    assert payload["recipient_id"] == "admin-a"
    assert payload["priority"] == "urgent"
    assert payload["action_data"]["requester_ferme_id"] == "B"
    assert payload["action_data"]["worker_cin"] == "AB123456"


def test_requesting_user_is_not_a_recipient(db, people, worker_in_a):
    found = workers.check_worker(db, "AB123456", "B", requester=people.admin_a)

    assert found["conflict"] is True
    assert found["recipients"] == []


def test_check_without_conflict(db, people, worker_in_a):
    assert workers.check_worker(db, "AB123456", "A") == {"conflict": False}
    assert workers.check_worker(db, "ZZ000", "B") == {"conflict": False}


def test_already_active_in_same_farm(db, people, worker_in_a):
    with pytest.raises(ValidationError):
        workers.register_worker(db, people.admin_a, nom="Said", cin="AB123456", ferme_id="A")


def test_exit_date_frees_the_worker(db, people, worker_in_a, notifier, producer):
    left = workers.record_exit(
        db, worker_in_a.id, people.admin_a, date_sortie=date(2024, 6, 30),
        requester_ferme_id="B", notifier=notifier,
    )

    assert left.statut == INACTIF
    assert left.date_sortie == date(2024, 6, 30)
    assert producer.routing_keys() == ["notification.worker_exit_confirmed"]
    assert producer.published[0][1]["recipient_id"] == "admin-b"

    registered = workers.register_worker(db, people.admin_b, nom="Said", cin="AB123456", ferme_id="B")
    assert registered.ferme_id == "B"


def test_exit_date_only_by_workers_farm(db, people, worker_in_a):
    with pytest.raises(PermissionDeniedError):
        workers.record_exit(db, worker_in_a.id, people.admin_b, date_sortie=date(2024, 6, 30))


def test_exit_requires_date(db, people, worker_in_a):
    with pytest.raises(ValidationError):
        workers.record_exit(db, worker_in_a.id, people.admin_a)
