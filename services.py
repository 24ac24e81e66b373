from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from pymongo.database import Database

from config import Settings
from database import MemoryCollection, MongoCollection, connect, ensure_indexes
from orders import OrderService
from stores import PlantStore, UserStore
from tokens import TokenCodec


@dataclass
class Services:
    settings: Settings
    codec: TokenCodec
    users: UserStore
    plants: PlantStore
    orders: OrderService
    database: Optional[Database] = None


class DatabaseConfigError(RuntimeError):
    pass


def _codec(settings: Settings) -> TokenCodec:
    return TokenCodec(settings.access_token_secret, timedelta(days=settings.token_lifetime_days))


def memory_services(settings: Settings) -> Services:
    """In-process collections, for tests only; nothing survives the process."""
    plants = PlantStore(MemoryCollection("plants"))
    return Services(
        settings=settings,
        codec=_codec(settings),
        users=UserStore(MemoryCollection("users")),
        plants=plants,
        orders=OrderService(MemoryCollection("orders"), plants),
    )


def mongo_services(settings: Settings, db: Optional[Database] = None) -> Services:
    if db is None:
        db = connect(settings.database_url, settings.database_name)
    ensure_indexes(db)
    plants = PlantStore(MongoCollection(db["plants"]))
    return Services(
        settings=settings,
        codec=_codec(settings),
        users=UserStore(MongoCollection(db["users"])),
        plants=plants,
        orders=OrderService(MongoCollection(db["orders"]), plants),
        database=db,
    )


def build_services(settings: Settings) -> Services:
    if not settings.database_url:
        raise DatabaseConfigError("DATABASE_URL is not set")
    return mongo_services(settings)
