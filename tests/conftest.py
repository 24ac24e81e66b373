import uuid

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app
from schemas import PlantCreate
from services import memory_services, mongo_services

BUYER = "buyer@example.com"
SELLER_EMAIL = "seller@example.com"
ADMIN_EMAIL = "admin@example.com"


@pytest.fixture
def settings():
    return Settings(access_token_secret="test-secret")


@pytest.fixture(params=["memory", "mongo"])
def services(request, settings):
    if request.param == "memory":
        return memory_services(settings)
    # a fresh database per test; mongomock clients on the same host share data
    db = mongomock.MongoClient()[f"plantnet_{uuid.uuid4().hex}"]
    return mongo_services(settings, db)


@pytest.fixture
def client(settings, services):
    with TestClient(create_app(settings, services)) as c:
        yield c


@pytest.fixture
def make_user(services):
    def _make_user(email, role=None, name="Test User"):
        services.users.upsert_on_first_seen(email, {"name": name})
        if role:
            services.users.set_role_and_verify(email, role)
        return services.users.find_by_email(email)
    return _make_user


@pytest.fixture
def auth(services):
    def _auth(email):
        return {"Cookie": f"token={services.codec.issue({'email': email})}"}
    return _auth


@pytest.fixture
def make_plant(services):
    def _make_plant(seller_email=SELLER_EMAIL, quantity=10, name="Monstera"):
        plant = PlantCreate(plantName=name, category="Indoor", price=25.0, quantity=quantity, image="https://img/monstera.jpg")
        res = services.plants.create(plant, {"email": seller_email, "name": "Seller"})
        return str(res.inserted_id)
    return _make_plant


def order_payload(plant_id, customer=BUYER, seller=SELLER_EMAIL, quantity=3):
    return {
        "customer": {"email": customer, "name": "Buyer"},
        "plantId": plant_id,
        "price": 75.0,
        "quantity": quantity,
        "seller": seller,
        "address": "12 Fern Street",
    }
