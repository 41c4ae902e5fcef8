import logging
import os
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "lesson-tracker")

db: Optional[Database] = None

if DATABASE_URL:
    try:
        client = MongoClient(DATABASE_URL)
        db = client[DATABASE_NAME]
    except Exception as e:
        logger.error("Could not connect to MongoDB: %s", e)
        db = None


def _as_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True, exclude_none=True, mode="json")
    return dict(data)


def create_document(collection_name: str, data: Union[BaseModel, dict], database: Optional[Database] = None) -> str:
    """Insert a document with timestamps and return its id as a string."""
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not available")
    doc = _as_dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    result = target[collection_name].insert_one(doc)
    return str(result.inserted_id)

