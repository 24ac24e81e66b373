import time
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import DuplicateKeyError

from database import DocumentCollection, DeleteSummary, InsertSummary, UpdateSummary
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailure
from schemas import PlantCreate, PlantUpdate, REQUESTED, User, VERIFIED

logger = logging.getLogger(__name__)

# -------------------- Helpers --------------------

def to_object_id(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    # ObjectId(None) would mint a fresh id
    if not isinstance(id_str, str):
        raise ValidationFailure("Invalid id format")
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationFailure("Invalid id format")


def parse_object_id(id_str: Any) -> Optional[ObjectId]:
    """Like ``to_object_id`` but returns None for anything that is not an ObjectId."""
    try:
        return to_object_id(id_str)
    except ValidationFailure:
        return None


def doc_to_json(doc: dict) -> dict:
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, datetime):
            out[k] = v.isoformat()
        elif isinstance(v, dict):
            out[k] = doc_to_json(v)
        elif isinstance(v, list):
            out[k] = [doc_to_json(x) if isinstance(x, dict) else (str(x) if isinstance(x, ObjectId) else x) for x in v]
        else:
            out[k] = v
    return out


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -------------------- Identity store --------------------

class UserStore:
    def __init__(self, collection: DocumentCollection):
        self.collection = collection

    def find_by_email(self, email: str) -> Optional[dict]:
        return self.collection.find_one({"email": email})

    def get_role(self, email: str) -> Optional[str]:
        user = self.find_by_email(email)
        return user.get("role") if user else None

    def upsert_on_first_seen(self, email: str, profile: Dict[str, Any]) -> Tuple[dict, bool]:
        """Create the user on first sight; concurrent first logins yield one record.

        The existence check and the insert are a single store operation. A
        unique index on ``email`` backs it up, so losing a race to the index
        counts as "already existed".
        """
        # role and status are never taken from the caller
        doc = User(
            email=email,
            name=profile.get("name"),
            image=profile.get("image"),
            timestamp=int(time.time() * 1000),
        ).model_dump()
        doc["created_at"] = utcnow()
        try:
            res = self.collection.insert_if_absent({"email": email}, doc)
            created = res.upserted_id is not None
        except DuplicateKeyError:
            created = False
        if created:
            logger.info("Created user record for %s", email)
        return self.find_by_email(email), created

    def request_verification(self, email: str) -> UpdateSummary:
        # the status check is part of the update filter, so two racing requests cannot both succeed
        res = self.collection.update_one({"email": email, "status": {"$ne": REQUESTED}}, {"status": REQUESTED})
        if res.matched_count == 0:
            if self.find_by_email(email) is None:
                raise NotFoundError("User not found")
            raise ValidationFailure("You are already requested, wait for some time")
        return res

    def set_role_and_verify(self, email: str, role: str) -> UpdateSummary:
        res = self.collection.update_one({"email": email}, {"role": role, "status": VERIFIED})
        if res.matched_count == 0:
            raise NotFoundError("User not found")
        logger.info("Role of %s set to %s", email, role)
        return res

    def list_all_except(self, email: str) -> List[dict]:
        return self.collection.find({"email": {"$ne": email}})


# -------------------- Catalog store --------------------

class PlantStore:
    def __init__(self, collection: DocumentCollection):
        self.collection = collection

    def create(self, plant: PlantCreate, seller: Dict[str, Any]) -> InsertSummary:
        doc = plant.model_dump(exclude={"seller"})
        doc["seller"] = seller
        doc.update({"created_at": utcnow(), "updated_at": utcnow()})
        return self.collection.insert_one(doc)

    def find_all(self) -> List[dict]:
        return self.collection.find()

    def find_by_id(self, plant_id: Any) -> Optional[dict]:
        return self.collection.find_one({"_id": to_object_id(plant_id)})

    def find_by_ids(self, plant_ids: List[ObjectId]) -> List[dict]:
        if not plant_ids:
            return []
        return self.collection.find({"_id": {"$in": list(plant_ids)}})

    def find_by_seller(self, email: str) -> List[dict]:
        return self.collection.find({"seller.email": email})

    def update_full(self, plant_id: Any, fields: PlantUpdate, seller_email: str) -> UpdateSummary:
        oid = self._owned(plant_id, seller_email)
        update = fields.model_dump()
        update["updated_at"] = utcnow()
        return self.collection.update_one({"_id": oid}, update)

    def delete(self, plant_id: Any, seller_email: str) -> DeleteSummary:
        oid = self._owned(plant_id, seller_email)
        return self.collection.delete_one({"_id": oid})

    def adjust_quantity(self, plant_id: Any, delta: int) -> UpdateSummary:
        """Apply a signed stock change: negative for a sale, positive for a restock.

        A decrement only matches while enough stock remains, so the check and
        the write are one store operation and stock never goes below zero.
        """
        if not isinstance(delta, int) or isinstance(delta, bool) or delta == 0:
            raise ValidationFailure("Quantity change must be a non-zero integer")
        oid = to_object_id(plant_id)
        query: Dict[str, Any] = {"_id": oid}
        if delta < 0:
            query["quantity"] = {"$gte": -delta}
        res = self.collection.increment(query, "quantity", delta)
        if res.matched_count == 0:
            if self.collection.find_one({"_id": oid}) is None:
                raise NotFoundError("Plant not found")
            raise ConflictError("Not enough plants in stock")
        return res

    def _owned(self, plant_id: Any, seller_email: str) -> ObjectId:
        oid = to_object_id(plant_id)
        plant = self.collection.find_one({"_id": oid})
        if not plant:
            raise NotFoundError("Plant not found")
        if (plant.get("seller") or {}).get("email") != seller_email:
            raise ForbiddenError("Forbidden Access! Not your plant")
        return oid
