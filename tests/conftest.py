"""
Pytest configuration and shared fixtures

MongoDB is replaced by mongomock behind the real DocumentStore; the blob
store is a Mock that records puts and deletes.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient
from unittest.mock import Mock

from attachments import AttachmentCoordinator, UploadedFile
from config import ApiConfig
from database import DocumentStore
from handlers import ResourceService
from main import create_app
from schemas import ResourceDefinition, build_resource

BLOB_BASE = "https://blobs.test"


PRODUCTS = {
    "name": "products",
    "schema": {
        "name": {"type": "String", "required": True},
        "sku": {"type": "String", "unique": True},
        "price": {"type": "Number", "min": 0},
        "category": {"type": "String", "enum": ["books", "games", "tools"]},
        "inStock": {"type": "Boolean", "default": True},
        "zip": "String",
        "tags": ["String"],
    },
    "searchBy": ["name"],
    "filterBy": ["price", "category", "inStock", "zip"],
}

STUDENTS = {
    "name": "Students",
    "schema": {
        "name": {"type": "String", "required": True},
        "email": {"type": "String", "unique": True},
        "age": {"type": "Number", "min": 10, "max": 100},
        "grade": {"type": "String", "enum": ["A", "B", "C", "D", "F"]},
        "photo": {"type": "File", "required": True, "maxSize": 1, "accept": "image/*"},
        "transcript": {"type": "File", "accept": ".pdf"},
    },
    "searchBy": ["name", "email"],
    "filterBy": ["grade", "age"],
}


def make_resource(definition):
    return build_resource(ResourceDefinition.model_validate(definition))


def make_file(filename="photo.png", content_type="image/png", size=16):
    return UploadedFile(filename=filename, content_type=content_type, content=b"x" * size)


@pytest.fixture
def db():
    return mongomock.MongoClient(tz_aware=True)["rapid_api_test"]


@pytest.fixture
def blob_store():
    store = Mock()
    store.put.side_effect = lambda path, content, content_type="application/octet-stream": f"{BLOB_BASE}/{path}"
    return store


@pytest.fixture
def products_resource():
    return make_resource(PRODUCTS)


@pytest.fixture
def students_resource():
    return make_resource(STUDENTS)


@pytest.fixture
def products_service(db, products_resource):
    store = DocumentStore(db["products"], products_resource)
    store.ensure_indexes()
    return ResourceService(products_resource, store)


@pytest.fixture
def students_service(db, students_resource, blob_store):
    store = DocumentStore(db["students"], students_resource)
    store.ensure_indexes()
    return ResourceService(students_resource, store, AttachmentCoordinator(blob_store))


@pytest.fixture
def config():
    return ApiConfig(
        mongo_uri="mongodb://localhost:27017/rapid_api_test",
        resources=[PRODUCTS, STUDENTS],
        logging=False,
    )


@pytest.fixture
def app(config, db, blob_store):
    return create_app(config, db=db, blob_store=blob_store)


@pytest.fixture
def client(app):
    return TestClient(app)
