"""
Database access for the Polli Ahaar API

One MongoClient is opened when the app starts and closed when it stops.
Routes receive the database handle through the ``get_db`` dependency.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

load_dotenv()

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def connect(url: Optional[str] = None, name: Optional[str] = None) -> Optional[Database]:
    global _client, _db
    url = url or os.getenv("DATABASE_URL")
    if not url:
        logger.warning("DATABASE_URL not set; running without a database")
        return None
    _client = MongoClient(url)
    _db = _client[name or os.getenv("DATABASE_NAME", "PolliAhaarDB")]
    logger.info("Connected to MongoDB database %s", _db.name)
    return _db


def close() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
        logger.info("MongoDB connection closed")
    _client = None
    _db = None


def get_db() -> Database:
    if _db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return _db


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document with createdAt/updatedAt stamps and return its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("createdAt", now)
    doc.setdefault("updatedAt", now)
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)

