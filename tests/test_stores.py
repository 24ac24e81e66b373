import threading
import uuid

import mongomock
import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from database import DocumentCollection, MemoryCollection
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailure
from schemas import ADMIN, CUSTOMER, PlantUpdate, REQUESTED, SELLER, UNVERIFIED, VERIFIED
from services import memory_services, mongo_services
from stores import UserStore

from conftest import BUYER, SELLER_EMAIL


def test_upsert_is_idempotent(services):
    first, created = services.users.upsert_on_first_seen(BUYER, {"name": "Buyer"})
    second, created_again = services.users.upsert_on_first_seen(BUYER, {"name": "Someone Else"})
    assert created and not created_again
    assert first == second
    assert len(services.users.collection.find({"email": BUYER})) == 1


def test_new_user_defaults_cannot_be_self_granted(services):
    user, _ = services.users.upsert_on_first_seen(BUYER, {"name": "Buyer", "role": ADMIN, "status": VERIFIED})
    assert user["role"] == CUSTOMER
    assert user["status"] == UNVERIFIED
    assert isinstance(user["timestamp"], int)


def test_request_verification_once(services, make_user):
    make_user(BUYER)
    res = services.users.request_verification(BUYER)
    assert res.modified_count == 1
    assert services.users.find_by_email(BUYER)["status"] == REQUESTED
    with pytest.raises(ValidationFailure):
        services.users.request_verification(BUYER)


def test_request_verification_unknown_user(services):
    with pytest.raises(NotFoundError):
        services.users.request_verification("ghost@example.com")


def test_set_role_and_verify(services, make_user):
    make_user(BUYER)
    services.users.request_verification(BUYER)
    services.users.set_role_and_verify(BUYER, SELLER)
    user = services.users.find_by_email(BUYER)
    assert (user["role"], user["status"]) == (SELLER, VERIFIED)
    assert services.users.get_role(BUYER) == SELLER


def test_set_role_unknown_user(services):
    with pytest.raises(NotFoundError):
        services.users.set_role_and_verify("ghost@example.com", SELLER)


def test_list_all_except_caller(services, make_user):
    for email in (BUYER, SELLER_EMAIL, "admin@example.com"):
        make_user(email)
    emails = {u["email"] for u in services.users.list_all_except("admin@example.com")}
    assert emails == {BUYER, SELLER_EMAIL}


def test_sale_decrements_stock(services, make_plant):
    plant_id = make_plant(quantity=10)
    services.plants.adjust_quantity(plant_id, -3)
    assert services.plants.find_by_id(plant_id)["quantity"] == 7


def test_restock_increments_stock(services, make_plant):
    plant_id = make_plant(quantity=2)
    services.plants.adjust_quantity(plant_id, 5)
    assert services.plants.find_by_id(plant_id)["quantity"] == 7


def test_oversell_is_rejected_without_change(services, make_plant):
    plant_id = make_plant(quantity=2)
    with pytest.raises(ConflictError):
        services.plants.adjust_quantity(plant_id, -3)
    assert services.plants.find_by_id(plant_id)["quantity"] == 2


def test_selling_exact_stock_reaches_zero(services, make_plant):
    plant_id = make_plant(quantity=3)
    services.plants.adjust_quantity(plant_id, -3)
    assert services.plants.find_by_id(plant_id)["quantity"] == 0


@pytest.mark.parametrize("delta", [0, 1.5, True])
def test_adjust_rejects_non_integer_or_zero_delta(services, make_plant, delta):
    plant_id = make_plant()
    with pytest.raises(ValidationFailure):
        services.plants.adjust_quantity(plant_id, delta)


def test_adjust_missing_plant(services):
    with pytest.raises(NotFoundError):
        services.plants.adjust_quantity(str(ObjectId()), -1)


def test_invalid_plant_id(services):
    with pytest.raises(ValidationFailure):
        services.plants.find_by_id("not-an-id")


def test_find_by_seller(services, make_plant):
    mine = make_plant(SELLER_EMAIL)
    make_plant("other@example.com")
    assert [str(p["_id"]) for p in services.plants.find_by_seller(SELLER_EMAIL)] == [mine]


def test_update_full_by_owner(services, make_plant):
    plant_id = make_plant()
    fields = PlantUpdate(plantName="Fiddle Leaf", category="Indoor", price=40.0, quantity=4, image=None)
    services.plants.update_full(plant_id, fields, SELLER_EMAIL)
    plant = services.plants.find_by_id(plant_id)
    assert (plant["plantName"], plant["quantity"]) == ("Fiddle Leaf", 4)
    assert plant["seller"]["email"] == SELLER_EMAIL


def test_update_and_delete_by_other_seller_forbidden(services, make_plant):
    plant_id = make_plant()
    fields = PlantUpdate(plantName="Stolen", category="Indoor", price=1.0, quantity=1)
    with pytest.raises(ForbiddenError):
        services.plants.update_full(plant_id, fields, "other@example.com")
    with pytest.raises(ForbiddenError):
        services.plants.delete(plant_id, "other@example.com")
    assert services.plants.find_by_id(plant_id)["plantName"] == "Monstera"


def test_delete_by_owner(services, make_plant):
    plant_id = make_plant()
    assert services.plants.delete(plant_id, SELLER_EMAIL).deleted_count == 1
    assert services.plants.find_by_id(plant_id) is None


# -------------------- Concurrency and backends --------------------

def _race(worker, threads=8):
    barrier = threading.Barrier(threads)
    results, errors = [], []

    def run():
        barrier.wait()
        try:
            results.append(worker())
        except Exception as exc:
            errors.append(exc)

    pool = [threading.Thread(target=run) for _ in range(threads)]
    for t in pool:
        t.start()
    for t in pool:
        t.join()
    return results, errors


def test_concurrent_first_logins_create_one_record(settings):
    users = memory_services(settings).users
    results, errors = _race(lambda: users.upsert_on_first_seen(BUYER, {"name": "Buyer"}))
    assert errors == []
    assert [created for _, created in results].count(True) == 1
    assert len(users.collection.find({"email": BUYER})) == 1
    assert len({str(user["_id"]) for user, _ in results}) == 1


def test_concurrent_verification_requests_succeed_once(settings):
    users = memory_services(settings).users
    users.upsert_on_first_seen(BUYER, {"name": "Buyer"})
    results, errors = _race(lambda: users.request_verification(BUYER))
    assert len(results) == 1
    assert len(errors) == 7
    assert all(isinstance(e, ValidationFailure) for e in errors)


class LosesInsertRace(MemoryCollection):
    """Another writer inserts the same email first and the unique index rejects ours."""

    def insert_if_absent(self, query, doc):
        self.insert_one({**doc, "name": "First Writer"})
        raise DuplicateKeyError("E11000 duplicate key error")


def test_upsert_losing_race_to_unique_index_returns_existing():
    users = UserStore(LosesInsertRace("users"))
    user, created = users.upsert_on_first_seen(BUYER, {"name": "Buyer"})
    assert not created
    assert user["name"] == "First Writer"


def test_mongo_users_have_unique_email_index(settings):
    db = mongomock.MongoClient()[f"plantnet_{uuid.uuid4().hex}"]
    mongo_services(settings, db).users.upsert_on_first_seen(BUYER, {"name": "Buyer"})
    with pytest.raises(DuplicateKeyError):
        db["users"].insert_one({"email": BUYER})


def test_collection_must_implement_every_capability():
    class FindOnly(DocumentCollection):
        def find(self, query=None):
            return []

    with pytest.raises(TypeError):
        FindOnly()
