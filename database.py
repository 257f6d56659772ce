"""
Persistence for the storefront.

A Database is an explicitly constructed handle: open() at startup, close() at
shutdown, then handed to the services that need it. Two backends share the
same Product Store / Order Store surface:

- MongoDatabase, backed by pymongo. Stock reservation is a single conditional
  find_one_and_update, so MongoDB applies the check and the decrement as one
  atomic document write.
- MemoryDatabase, an in-process store used when DATABASE_URL is unset or
  ``memory://``. A lock is held across each check-and-write.
"""

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError

from config import Settings
from errors import Conflict, InsufficientStock, NotFound
from schemas import Order, Product

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_str_id(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d


def to_order_doc(doc: Optional[dict]) -> Optional[dict]:
    # orderId is the public identity; the storage id never leaves this module
    if doc is None:
        return None
    d = dict(doc)
    d.pop("_id", None)
    return d


def _object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def create_document(collection, data: Product) -> dict:
    """Insert a model into a collection with created/updated timestamps."""
    now = utcnow()
    doc = data.model_dump()
    doc["createdAt"] = now
    doc["updatedAt"] = now
    result = collection.insert_one(doc)
    doc["_id"] = result.inserted_id
    return to_str_id(doc)


# --- MongoDB backend ---


class MongoProductStore:
    def __init__(self, collection):
        self.collection = collection

    def get(self, product_id: str) -> Optional[dict]:
        oid = _object_id(product_id)
        if oid is None:
            return None
        return to_str_id(self.collection.find_one({"_id": oid}))

    def get_many(self, product_ids: Iterable[str]) -> Dict[str, dict]:
        oids = [oid for oid in (_object_id(p) for p in set(product_ids)) if oid is not None]
        if not oids:
            return {}
        docs = self.collection.find({"_id": {"$in": oids}})
        return {d["id"]: d for d in (to_str_id(doc) for doc in docs)}

    def list(self, category: Optional[str] = None) -> List[dict]:
        filt = {"category": category} if category else {}
        docs = self.collection.find(filt).sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        return [to_str_id(d) for d in docs]

    def categories(self) -> List[str]:
        return sorted(self.collection.distinct("category"))

    def count(self) -> int:
        return self.collection.count_documents({})

    def create(self, product: Product) -> dict:
        return create_document(self.collection, product)

    def update(self, product_id: str, patch: dict) -> dict:
        oid = _object_id(product_id)
        doc = None
        if oid is not None:
            doc = self.collection.find_one_and_update(
                {"_id": oid},
                {"$set": {**patch, "updatedAt": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFound("Product", product_id)
        return to_str_id(doc)

    def delete(self, product_id: str) -> None:
        oid = _object_id(product_id)
        if oid is None or self.collection.delete_one({"_id": oid}).deleted_count == 0:
            raise NotFound("Product", product_id)

    def reserve(self, product_id: str, amount: int) -> dict:
        """Atomically take ``amount`` units if at least that many are in stock.

        Returns the product as it was just before the decrement.
        """
        oid = _object_id(product_id)
        if oid is None:
            raise NotFound("Product", product_id)
        doc = self.collection.find_one_and_update(
            {"_id": oid, "stock": {"$gte": amount}},
            {"$inc": {"stock": -amount}, "$set": {"updatedAt": utcnow()}},
            return_document=ReturnDocument.BEFORE,
        )
        if doc is None:
            existing = self.collection.find_one({"_id": oid}, {"name": 1})
            if existing is None:
                raise NotFound("Product", product_id)
            raise InsufficientStock(product_id, amount, existing.get("name"))
        return to_str_id(doc)

    def increment(self, product_id: str, amount: int) -> None:
        oid = _object_id(product_id)
        if oid is None:
            return
        self.collection.update_one(
            {"_id": oid},
            {"$inc": {"stock": amount}, "$set": {"updatedAt": utcnow()}},
        )


class MongoOrderStore:
    def __init__(self, collection):
        self.collection = collection

    def ensure_indexes(self):
        self.collection.create_index([("orderId", ASCENDING)], unique=True)
        self.collection.create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])

    def create(self, order: Order) -> dict:
        doc = order.model_dump()
        try:
            self.collection.insert_one(doc)
        except DuplicateKeyError as e:
            raise Conflict(order.orderId) from e
        return to_order_doc(doc)

    def get(self, order_id: str) -> Optional[dict]:
        return to_order_doc(self.collection.find_one({"orderId": order_id}))

    def find_by_user(self, user_id: str) -> List[dict]:
        docs = self.collection.find({"userId": user_id}).sort(
            [("createdAt", DESCENDING), ("_id", DESCENDING)]
        )
        return [to_order_doc(d) for d in docs]

    def find_all(self, limit: Optional[int] = None) -> List[dict]:
        cursor = self.collection.find({}).sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        if limit:
            cursor = cursor.limit(limit)
        return [to_order_doc(d) for d in cursor]

    def update(self, order_id: str, patch: dict) -> dict:
        doc = self.collection.find_one_and_update(
            {"orderId": order_id},
            {"$set": patch},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFound("Order", order_id)
        return to_order_doc(doc)

    def count(self, filt: Optional[dict] = None) -> int:
        return self.collection.count_documents(filt or {})

    def revenue(self) -> float:
        rows = list(
            self.collection.aggregate(
                [
                    {"$match": {"paymentStatus": "Completed"}},
                    {"$group": {"_id": None, "total": {"$sum": "$totalAmount"}}},
                ]
            )
        )
        return float(rows[0]["total"]) if rows else 0.0


class Database:
    """Base store handle. Subclasses fill in products/orders on open()."""

    backend = "none"

    def __init__(self):
        self._products = None
        self._orders = None

    @property
    def is_open(self) -> bool:
        return self._products is not None

    @property
    def products(self):
        if self._products is None:
            raise RuntimeError("Database is not open")
        return self._products

    @property
    def orders(self):
        if self._orders is None:
            raise RuntimeError("Database is not open")
        return self._orders

    def open(self) -> "Database":
        raise NotImplementedError

    def close(self) -> None:
        self._products = None
        self._orders = None

    def ping(self) -> Dict[str, Any]:
        raise NotImplementedError

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()


def make_client(url: Optional[str]) -> MongoClient:
    return MongoClient(url, tz_aware=True)


class MongoDatabase(Database):
    backend = "mongodb"

    def __init__(self, url: Optional[str], name: str, client: Optional[MongoClient] = None):
        super().__init__()
        self.url = url
        self.name = name
        self._client = client
        self._owns_client = client is None
        self.db = None

    def open(self) -> "MongoDatabase":
        if self.is_open:
            return self
        if self._client is None:
            self._client = make_client(self.url)
        self.db = self._client[self.name]
        self._products = MongoProductStore(self.db["product"])
        self._orders = MongoOrderStore(self.db["order"])
        self._orders.ensure_indexes()
        logger.info("Opened MongoDB database %s", self.name)
        return self

    def close(self) -> None:
        super().close()
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        self.db = None
        logger.info("Closed MongoDB database %s", self.name)

    def ping(self) -> Dict[str, Any]:
        self._client.admin.command("ping")
        return {"collections": self.db.list_collection_names()[:10]}


# --- In-process backend ---


class MemoryProductStore:
    def __init__(self):
        self._docs: Dict[str, dict] = {}
        self._seq = 0
        self._lock = threading.Lock()

    def _out(self, doc: dict) -> dict:
        # Copies only; callers never hold references into the store
        d = copy.deepcopy(doc)
        d.pop("_seq", None)
        return d

    def get(self, product_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._docs.get(product_id)
            return self._out(doc) if doc else None

    def get_many(self, product_ids: Iterable[str]) -> Dict[str, dict]:
        with self._lock:
            return {p: self._out(self._docs[p]) for p in set(product_ids) if p in self._docs}

    def list(self, category: Optional[str] = None) -> List[dict]:
        with self._lock:
            docs = [d for d in self._docs.values() if not category or d["category"] == category]
            docs.sort(key=lambda d: (d["createdAt"], d["_seq"]), reverse=True)
            return [self._out(d) for d in docs]

    def categories(self) -> List[str]:
        with self._lock:
            return sorted({d["category"] for d in self._docs.values()})

    def count(self) -> int:
        with self._lock:
            return len(self._docs)

    def create(self, product: Product) -> dict:
        now = utcnow()
        with self._lock:
            self._seq += 1
            doc = product.model_dump()
            doc.update(id=str(ObjectId()), createdAt=now, updatedAt=now, _seq=self._seq)
            self._docs[doc["id"]] = doc
            return self._out(doc)

    def update(self, product_id: str, patch: dict) -> dict:
        with self._lock:
            doc = self._docs.get(product_id)
            if doc is None:
                raise NotFound("Product", product_id)
            doc.update(copy.deepcopy(patch), updatedAt=utcnow())
            return self._out(doc)

    def delete(self, product_id: str) -> None:
        with self._lock:
            if self._docs.pop(product_id, None) is None:
                raise NotFound("Product", product_id)

    def reserve(self, product_id: str, amount: int) -> dict:
        with self._lock:
            doc = self._docs.get(product_id)
            if doc is None:
                raise NotFound("Product", product_id)
            if doc["stock"] < amount:
                raise InsufficientStock(product_id, amount, doc.get("name"))
            before = self._out(doc)
            doc["stock"] -= amount
            doc["updatedAt"] = utcnow()
            return before

    def increment(self, product_id: str, amount: int) -> None:
        with self._lock:
            doc = self._docs.get(product_id)
            if doc is not None:
                doc["stock"] += amount
                doc["updatedAt"] = utcnow()


class MemoryOrderStore:
    def __init__(self):
        self._docs: Dict[str, dict] = {}
        self._seq = 0
        self._lock = threading.Lock()

    def _out(self, doc: dict) -> dict:
        d = copy.deepcopy(doc)
        d.pop("_seq", None)
        return d

    def _newest_first(self, docs: Iterable[dict]) -> List[dict]:
        return sorted(docs, key=lambda d: (d["createdAt"], d["_seq"]), reverse=True)

    def create(self, order: Order) -> dict:
        with self._lock:
            if order.orderId in self._docs:
                raise Conflict(order.orderId)
            self._seq += 1
            doc = order.model_dump()
            doc["_seq"] = self._seq
            self._docs[order.orderId] = doc
            return self._out(doc)

    def get(self, order_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._docs.get(order_id)
            return self._out(doc) if doc else None

    def find_by_user(self, user_id: str) -> List[dict]:
        with self._lock:
            docs = [d for d in self._docs.values() if d["userId"] == user_id]
            return [self._out(d) for d in self._newest_first(docs)]

    def find_all(self, limit: Optional[int] = None) -> List[dict]:
        with self._lock:
            docs = self._newest_first(self._docs.values())
            if limit:
                docs = docs[:limit]
            return [self._out(d) for d in docs]

    def update(self, order_id: str, patch: dict) -> dict:
        with self._lock:
            doc = self._docs.get(order_id)
            if doc is None:
                raise NotFound("Order", order_id)
            doc.update(copy.deepcopy(patch))
            return self._out(doc)

    def count(self, filt: Optional[dict] = None) -> int:
        with self._lock:
            filt = filt or {}
            return sum(
                1 for d in self._docs.values() if all(d.get(k) == v for k, v in filt.items())
            )

    def revenue(self) -> float:
        with self._lock:
            return float(
                sum(d["totalAmount"] for d in self._docs.values() if d["paymentStatus"] == "Completed")
            )


class MemoryDatabase(Database):
    backend = "memory"

    def open(self) -> "MemoryDatabase":
        if not self.is_open:
            self._products = MemoryProductStore()
            self._orders = MemoryOrderStore()
            logger.info("Opened in-memory database")
        return self

    def close(self) -> None:
        super().close()
        logger.info("Closed in-memory database")

    def ping(self) -> Dict[str, Any]:
        return {"collections": ["order", "product"]}


def connect(settings: Settings) -> Database:
    """Build (but do not open) the database handle selected by settings."""
    url = settings.database_url
    if not url or url.startswith("memory://"):
        return MemoryDatabase()
    return MongoDatabase(url, settings.database_name)
