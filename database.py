"""
Document store handle.

The connection is owned by a Database instance that the application opens
at startup and closes on shutdown; nothing in the code base reaches for a
module-level client. Collection names follow the lowercase model name
convention: Product -> "product", Cart -> "cart", Order -> "order".
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from errors import NotFound

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    # Mongo stores naive UTC; keep app-side timestamps comparable with stored ones
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(id_str: str, label: str = "Resource") -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise NotFound(f"{label} not found")


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return doc


def paginate(page: int, limit: int, total: int) -> dict:
    pages = math.ceil(total / limit) if limit else 0
    return {
        "current": page,
        "pages": pages,
        "total": total,
        "has_next": page < pages,
        "has_prev": page > 1,
    }


class Database:
    """Explicit handle around a Mongo client.

    `client` may be injected (tests pass a mongomock client); otherwise one
    is created from `url` when `open()` is called.
    """

    def __init__(self, url: Optional[str] = None, name: str = "storefront", client: Any = None):
        self.url = url
        self.name = name
        self._client = client
        self._owns_client = client is None
        self._db = None

    def open(self) -> "Database":
        if self._client is None:
            self._client = MongoClient(self.url)
        self._db = self._client[self.name]
        self.ensure_indexes()
        logger.info("database_opened", database=self.name)
        return self

    def close(self) -> None:
        # an injected client belongs to whoever passed it in
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
            self._db = None
            logger.info("database_closed", database=self.name)

    @property
    def is_open(self) -> bool:
        return self._db is not None

    def __getitem__(self, collection_name: str):
        if self._db is None:
            raise RuntimeError("Database is not open")
        return self._db[collection_name]

    def list_collection_names(self):
        return self._db.list_collection_names() if self._db is not None else []

    @property
    def products(self):
        return self["product"]

    @property
    def carts(self):
        return self["cart"]

    @property
    def orders(self):
        return self["order"]

    @property
    def users(self):
        return self["user"]

    @property
    def checkouts(self):
        return self["checkout"]

    def users_by_id(self, user_ids) -> Dict[str, dict]:
        """Name and email of each referenced user keyed by id; unknown or malformed ids are skipped."""
        oids = []
        for uid in set(user_ids):
            try:
                oids.append(to_object_id(uid, "User"))
            except NotFound:
                continue
        users = self.users.find({"_id": {"$in": oids}}, {"name": 1, "email": 1})
        return {str(u["_id"]): serialize(u) for u in users}

    def ensure_indexes(self) -> None:
        self.products.create_index("sku", unique=True)
        self.products.create_index([("category", ASCENDING), ("price", ASCENDING)])
        self.carts.create_index("user_id", unique=True)
        self.orders.create_index("order_number", unique=True)
        self.orders.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        self.orders.create_index("status")
        self.orders.create_index("checkout_id", sparse=True)
        self.checkouts.create_index([("state", ASCENDING), ("created_at", ASCENDING)])

    def create_document(self, collection_name: str, data: Any) -> str:
        if isinstance(data, BaseModel):
            data_dict = data.model_dump(mode="python")
        else:
            data_dict = dict(data)
        now = utcnow()
        data_dict.setdefault("created_at", now)
        data_dict["updated_at"] = now
        result = self[collection_name].insert_one(data_dict)
        return str(result.inserted_id)
