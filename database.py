"""
Database layer

MongoDB access through pymongo. One DocumentStore wraps one collection and
validates every write against the resource's DocumentModels before it
reaches the server. pymongo failures are translated into the error taxonomy
in errors.py so the handlers never see driver exceptions.
"""

import logging
import re
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pydantic import ValidationError
from pymongo import MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import MalformedIdentifier, RequestValidationError, StorageError, UniquenessViolation
from models import DocumentModels, validation_details
from schemas import ResourceConfig

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_NAME = "rapid_api"

_INDEX_NAME_PATTERN = re.compile(r"index:\s+(\S+?)_-?1\b")


def connect(uri: str, database_name: Optional[str] = None, client: Optional[MongoClient] = None) -> Database:
    client = client or MongoClient(uri, tz_aware=True)
    if database_name:
        return client[database_name]
    return client.get_default_database(default=DEFAULT_DATABASE_NAME)


def now() -> datetime:
    """Current UTC time at the millisecond precision BSON dates store."""
    current = datetime.now(timezone.utc)
    return current.replace(microsecond=current.microsecond // 1000 * 1000)


def parse_object_id(identifier: Any) -> ObjectId:
    if isinstance(identifier, ObjectId):
        return identifier
    if not isinstance(identifier, str) or not ObjectId.is_valid(identifier):
        raise MalformedIdentifier(str(identifier))
    return ObjectId(identifier)


def duplicate_key_field(error: DuplicateKeyError, unique_fields: List[str]) -> str:
    details = error.details or {}
    for key in ("keyPattern", "keyValue"):
        pattern = details.get(key)
        if pattern:
            return next(iter(pattern))
    match = _INDEX_NAME_PATTERN.search(str(error))
    if match:
        return match.group(1)
    if unique_fields:
        return unique_fields[0]
    return "_id"


class DocumentStore:
    """Schema-validated access to one resource collection."""

    def __init__(self, collection: Collection, resource: ResourceConfig, models: Optional[DocumentModels] = None):
        self.collection = collection
        self.resource = resource
        self.models = models or DocumentModels(resource)

    def ensure_indexes(self):
        for field in self.resource.unique_fields:
            self.collection.create_index(field, unique=True, sparse=True)

    # -----------------
    # Reads
    # -----------------

    def find_by_id(self, identifier: Any) -> Optional[dict]:
        oid = parse_object_id(identifier)
        with self._translate_errors():
            return self.collection.find_one({"_id": oid})

    def find(
        self,
        predicate: Dict[str, Any],
        projection: Optional[Dict[str, int]] = None,
        sort: Optional[List[Tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[dict]:
        with self._translate_errors():
            cursor = self.collection.find(predicate, projection or None)
            if sort:
                cursor = cursor.sort(sort)
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)

    def count(self, predicate: Dict[str, Any]) -> int:
        with self._translate_errors():
            return self.collection.count_documents(predicate)

    def distinct(self, field: str) -> List[Any]:
        with self._translate_errors():
            return self.collection.distinct(field)

    # -----------------
    # Writes
    # -----------------

    def create(self, body: Dict[str, Any], document_id: Optional[ObjectId] = None) -> dict:
        document = self._validate(body, partial=False)
        timestamp = now()
        document["createdAt"] = timestamp
        document["updatedAt"] = timestamp
        if document_id is not None:
            document["_id"] = document_id
        with self._translate_errors():
            result = self.collection.insert_one(document)
        document["_id"] = result.inserted_id
        return document

    def replace(self, identifier: Any, body: Dict[str, Any]) -> Optional[dict]:
        """Overwrite the whole document. Returns None when the id does not exist."""
        oid = parse_object_id(identifier)
        document = self._validate(body, partial=False)
        with self._translate_errors():
            existing = self.collection.find_one({"_id": oid}, {"createdAt": 1})
            if existing is None:
                return None
            document["createdAt"] = existing.get("createdAt", now())
            document["updatedAt"] = now()
            return self.collection.find_one_and_replace(
                {"_id": oid}, document, return_document=ReturnDocument.AFTER,
            )

    def update(self, identifier: Any, body: Dict[str, Any]) -> Optional[dict]:
        """$set only the given fields. Returns None when the id does not exist."""
        oid = parse_object_id(identifier)
        changes = self._validate(body, partial=True)
        changes["updatedAt"] = now()
        with self._translate_errors():
            return self.collection.find_one_and_update(
                {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER,
            )

    def delete(self, identifier: Any) -> Optional[dict]:
        oid = parse_object_id(identifier)
        with self._translate_errors():
            return self.collection.find_one_and_delete({"_id": oid})

    # -----------------
    # Helpers
    # -----------------

    def _validate(self, body: Dict[str, Any], partial: bool) -> Dict[str, Any]:
        try:
            if partial:
                return self.models.validate_partial(body)
            return self.models.validate_full(body)
        except ValidationError as e:
            raise RequestValidationError("Validation failed", details=validation_details(e))

    def _translate_errors(self):
        return translate_errors(self.resource)


@contextmanager
def translate_errors(resource: ResourceConfig):
    try:
        yield
    except DuplicateKeyError as e:
        raise UniquenessViolation(duplicate_key_field(e, resource.unique_fields)) from e
    except PyMongoError as e:
        logger.error("MongoDB error on %s: %s", resource.name, e)
        raise StorageError(f"Database operation failed on {resource.name}", cause=e) from e


class StoreFactory:
    """Creates DocumentStores for resources on one database."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, resource: ResourceConfig) -> DocumentStore:
        store = DocumentStore(self.db[resource.name], resource)
        store.ensure_indexes()
        return store
