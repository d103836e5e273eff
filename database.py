"""
MongoDB access for the shop API.

A single `Database` is opened when the application starts and closed on
shutdown; handlers and stores receive it explicitly instead of importing
a module-level connection.
"""
import functools
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, DecimalException
from typing import Any, Dict, Iterator, List, Optional, Union

from bson import ObjectId
from bson.decimal128 import Decimal128
from bson.errors import BSONError, InvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.client_session import ClientSession
from pymongo.errors import PyMongoError

from errors import NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shop")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_db(request: Request) -> "Database":
    """Dependency returning the handle opened in the application lifespan."""
    return request.app.state.db


def guard_storage(func):
    """Report driver failures from a store method as StorageError."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PyMongoError as e:
            logger.error("Storage failure", extra={"operation": func.__qualname__, "reason": str(e)})
            raise StorageError()

    return wrapper


def to_object_id(value: str, label: str = "Document") -> ObjectId:
    """Parse a path id, treating a malformed id like a missing document."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError(f"{label} not found")


def to_decimal128(value: Union[Decimal, float, int, str]) -> Decimal128:
    try:
        return Decimal128(str(value))
    except DecimalException:
        raise ValidationError(f"{value} cannot be stored as a decimal")


def serialize_doc(value: Any) -> Any:
    """Convert a stored document into JSON-friendly values, `_id` becoming `id`."""
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k == "_id":
                out["id"] = serialize_doc(v)
            else:
                out[k] = serialize_doc(v)
        return out
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Decimal128):
        return float(value.to_decimal())
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class Database:
    """Owns the Mongo client and hands out collections and transaction scopes."""

    def __init__(self, client: MongoClient, name: str = DATABASE_NAME):
        self.client = client
        self.db = client[name]
        self.name = name

    @classmethod
    def connect(cls, url: str = DATABASE_URL, name: str = DATABASE_NAME) -> "Database":
        client = MongoClient(url, tz_aware=True)
        logger.info("Database connection opened", extra={"database": name})
        return cls(client, name)

    def close(self) -> None:
        self.client.close()
        logger.info("Database connection closed", extra={"database": self.name})

    def __getitem__(self, collection_name: str):
        return self.db[collection_name]

    def ensure_indexes(self) -> None:
        self.db["user"].create_index([("email", ASCENDING)], unique=True)
        self.db["cart"].create_index([("userId", ASCENDING)], unique=True)
        self.db["orderdetail"].create_index([("orderId", ASCENDING)])

    def collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    @contextmanager
    def transaction(self) -> Iterator[Optional[ClientSession]]:
        """
        Open a session with a started transaction and yield it.

        The transaction commits when the block exits normally and aborts on
        any exception. Driver failures surface as StorageError; other errors
        raised inside the block propagate unchanged after the abort.
        """
        try:
            with self.client.start_session() as session:
                with session.start_transaction():
                    yield session
        except (PyMongoError, BSONError) as e:
            logger.error("Transaction rolled back", extra={"reason": str(e)})
            raise StorageError()

    def create_document(self, collection_name: str, data: Union[BaseModel, Dict[str, Any]],
                        session: Optional[ClientSession] = None) -> Dict[str, Any]:
        """Insert a document with timestamps and return it including its `_id`."""
        if isinstance(data, BaseModel):
            doc = data.model_dump(by_alias=True)
        else:
            doc = dict(data)
        now = utcnow()
        doc["createdAt"] = now
        doc["updatedAt"] = now
        result = self.db[collection_name].insert_one(doc, session=session)
        doc["_id"] = result.inserted_id
        return doc

    def get_documents(self, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                      limit: Optional[int] = None, session: Optional[ClientSession] = None) -> List[Dict[str, Any]]:
        cursor = self.db[collection_name].find(filter_dict or {}, session=session)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)
