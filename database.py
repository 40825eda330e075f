"""
Database access

A single Database object wraps one MongoClient (and its connection pool) for
the whole process. It is built once at startup, stored on ``app.state.db`` and
handed to request handlers through the ``get_db`` dependency.
"""

import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from dotenv import load_dotenv
from fastapi import HTTPException, Request
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "marketplace")


class Database:
    def __init__(self, client, name: str = DATABASE_NAME):
        self.client = client
        self.db = client[name]
        self.name = name

    @classmethod
    def from_env(cls) -> Optional["Database"]:
        if not DATABASE_URL:
            logger.warning("DATABASE_URL is not set, running without a database")
            return None
        logger.info("Connecting to MongoDB database %s", DATABASE_NAME)
        return cls(MongoClient(DATABASE_URL), DATABASE_NAME)

    def __getitem__(self, collection_name: str):
        return self.db[collection_name]

    def list_collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    @contextmanager
    def transaction(self):
        """Yield a session with an open transaction.

        The transaction commits when the block exits normally and aborts when
        it raises, so every write made with ``session=session`` lands together
        or not at all.
        """
        with self.client.start_session() as session:
            with session.start_transaction():
                yield session

    def create_document(self, collection_name: str, data: Union[BaseModel, Dict[str, Any]], session=None) -> str:
        if isinstance(data, BaseModel):
            doc = data.model_dump()
        else:
            doc = dict(data)
        now = datetime.now(timezone.utc)
        doc.setdefault("created_at", now)
        doc.setdefault("updated_at", now)
        result = self.db[collection_name].insert_one(doc, session=session)
        return str(result.inserted_id)

    def get_documents(self, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None, sort_newest: bool = True) -> List[Dict[str, Any]]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if sort_newest:
            cursor = cursor.sort("created_at", -1)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def ensure_indexes(self):
        # Cross-role uniqueness lives on the identity collection
        self.db["identity"].create_index([("email", ASCENDING)], unique=True)
        self.db["identity"].create_index([("national_id", ASCENDING)], unique=True)
        # At most one pending green seal request per producer
        self.db["green_seal_request"].create_index(
            [("producer_id", ASCENDING)],
            unique=True,
            partialFilterExpression={"status": "pending"},
            name="one_pending_request_per_producer",
        )
        self.db["green_seal_request"].create_index([("status", ASCENDING), ("created_at", -1)])
        self.db["order"].create_index([("consumer_id", ASCENDING), ("created_at", -1)])
        self.db["order"].create_index([("producer_id", ASCENDING), ("created_at", -1)])
        self.db["product"].create_index([("producer_id", ASCENDING)])
        self.db["proposal"].create_index([("requester_id", ASCENDING), ("created_at", -1)])

    def close(self):
        self.client.close()


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # Convert ObjectId in nested fields if any
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def parse_object_id(value: str, label: str) -> ObjectId:
    if not ObjectId.is_valid(value or ""):
        raise HTTPException(status_code=400, detail=f"Invalid {label} id")
    return ObjectId(value)


def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db
