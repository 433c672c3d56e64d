"""
HTTP tests for the generated routes

Uses FastAPI's TestClient against an app built on mongomock.
"""
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from config import ApiConfig
from main import create_app

PHOTO = ("me.png", b"\x89PNG-bytes", "image/png")


def _create_student(client, **fields):
    data = {"name": "Ann", **fields}
    response = client.post("/api/students", data=data, files={"photo": PHOTO})
    assert response.status_code == 201, response.json()
    return response.json()["data"]


class TestListing:
    @pytest.fixture
    def twelve_products(self, db):
        db["products"].insert_many([{"name": f"p{i}", "sku": f"S-{i}", "price": i} for i in range(1, 13)])

    def test_page_two_sorted_descending(self, client, twelve_products):
        response = client.get("/api/products?page=2&limit=5&sort=-price")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert [doc["price"] for doc in body["data"]] == [7, 6, 5, 4, 3]
        assert body["pagination"] == {
            "total": 12, "page": 2, "limit": 5, "totalPages": 3, "hasNext": True, "hasPrev": True,
        }

    def test_limit_is_capped(self, client, twelve_products):
        assert client.get("/api/products?limit=1000").json()["pagination"]["limit"] == 100

    def test_range_filter(self, client, twelve_products):
        body = client.get("/api/products?price_gte=3&price_lte=5&sort=price").json()
        assert [doc["price"] for doc in body["data"]] == [3, 4, 5]

    def test_unlisted_filter_ignored(self, client, twelve_products):
        assert client.get("/api/products?name=p1").json()["pagination"]["total"] == 12

    def test_field_projection(self, client, twelve_products):
        doc = client.get("/api/products?fields=name&limit=1").json()["data"][0]
        assert set(doc) == {"_id", "name"}

    def test_search_round_trip(self, client):
        _create_student(client, name="John", age="25", email="john@example.com")
        _create_student(client, name="Mary", email="mary@example.com")

        body = client.get("/api/students?search=john").json()

        assert [doc["name"] for doc in body["data"]] == ["John"]
        assert body["data"][0]["age"] == 25

    def test_empty_collection(self, client):
        body = client.get("/api/products").json()
        assert body["data"] == []
        assert body["pagination"]["totalPages"] == 0


class TestFilterValues:
    def test_distinct_sorted(self, client, db):
        db["students"].insert_many([{"name": n, "email": f"{n}@example.com", "grade": g} for n, g in zip("wxyz", "BABC")])

        response = client.get("/api/students/filters/grade")

        assert response.json() == {
            "success": True, "resource": "students", "field": "grade", "count": 3, "values": ["A", "B", "C"],
        }

    def test_field_not_filterable(self, client):
        response = client.get("/api/students/filters/name")
        assert response.status_code == 400
        assert "Allowed filter fields: grade, age" in response.json()["error"]

    def test_route_absent_without_filter_by(self, db):
        config = ApiConfig(
            mongo_uri="mongodb://localhost/test",
            resources=[{"name": "notes", "schema": {"title": "String"}}],
            logging=False,
        )
        client = TestClient(create_app(config, db=db))

        response = client.get("/api/notes/filters/title")

        assert response.status_code == 404
        assert response.json()["error"] == "Route not found: GET /api/notes/filters/title"


class TestSingleDocument:
    def test_get_created(self, client):
        created = client.post("/api/products", json={"name": "Widget", "price": 3}).json()["data"]

        response = client.get(f"/api/products/{created['_id']}")

        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Widget"

    def test_malformed_id(self, client):
        response = client.get("/api/products/not-an-id")
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": 'Invalid ID format: "not-an-id"'}

    def test_missing_id(self, client):
        missing = str(ObjectId())
        response = client.get(f"/api/products/{missing}")
        assert response.status_code == 404
        assert response.json()["error"] == f'products with id "{missing}" not found'


class TestMutations:
    def test_create_returns_201(self, client):
        response = client.post("/api/products", json={"name": "Widget", "category": "tools"})

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["inStock"] is True
        assert ObjectId.is_valid(data["_id"])
        assert "createdAt" in data

    def test_duplicate_unique_field(self, client):
        client.post("/api/products", json={"name": "A", "sku": "S-1"})

        response = client.post("/api/products", json={"name": "B", "sku": "S-1"})

        assert response.status_code == 409
        assert response.json()["error"] == 'Duplicate value for field "sku"'

    def test_validation_details(self, client):
        response = client.post("/api/products", json={"price": -2})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Validation failed"
        assert {detail["field"] for detail in body["details"]} == {"name", "price"}

    def test_empty_body(self, client):
        response = client.post("/api/products", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "Request body cannot be empty"

    def test_invalid_json(self, client):
        response = client.post(
            "/api/products", content=b"{not json", headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON in request body"

    def test_array_body_rejected(self, client):
        response = client.post("/api/products", json=[{"name": "A"}])
        assert response.status_code == 400

    def test_put_replaces(self, client):
        created = client.post("/api/products", json={"name": "A", "price": 1}).json()["data"]

        response = client.put(f"/api/products/{created['_id']}", json={"name": "B"})

        assert response.status_code == 200
        assert "price" not in response.json()["data"]

    def test_patch_updates_given_fields(self, client):
        created = client.post("/api/products", json={"name": "A", "price": 1}).json()["data"]

        response = client.patch(f"/api/products/{created['_id']}", json={"price": 9})

        data = response.json()["data"]
        assert (data["name"], data["price"]) == ("A", 9)

    def test_patch_null_required_field(self, client):
        created = client.post("/api/products", json={"name": "A"}).json()["data"]

        response = client.patch(f"/api/products/{created['_id']}", json={"name": None})

        assert response.status_code == 400
        assert response.json()["details"][0]["field"] == "name"
        assert client.get(f"/api/products/{created['_id']}").json()["data"]["name"] == "A"

    def test_blank_required_text(self, client):
        response = client.post("/api/products", json={"name": ""})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Validation failed"
        assert [detail["field"] for detail in body["details"]] == ["name"]

    def test_number_into_text_field(self, client):
        response = client.post("/api/products", json={"name": "W", "zip": 90210})

        assert response.status_code == 201
        assert response.json()["data"]["zip"] == "90210"

    def test_timestamps_match_between_create_and_read(self, client):
        created = client.post("/api/products", json={"name": "A"}).json()["data"]

        fetched = client.get(f"/api/products/{created['_id']}").json()["data"]

        assert fetched["createdAt"] == created["createdAt"]
        assert fetched["updatedAt"] == created["updatedAt"]

    def test_delete_then_not_found(self, client):
        created = client.post("/api/products", json={"name": "A"}).json()["data"]
        url = f"/api/products/{created['_id']}"

        first = client.delete(url)
        second = client.delete(url)

        assert first.status_code == 200
        assert first.json()["message"] == "products deleted successfully"
        assert second.status_code == 404


class TestFileFields:
    def test_multipart_create_stores_url(self, client, blob_store):
        data = _create_student(client, email="ann@example.com")

        assert data["photo"].startswith(f"https://blobs.test/students/{data['_id']}/photo-")
        assert data["photo"].endswith(".png")
        blob_store.put.assert_called_once()

    def test_rejected_file_type(self, client, blob_store):
        response = client.post(
            "/api/students", data={"name": "Ann"}, files={"photo": ("a.txt", b"hello", "text/plain")},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "File validation failed"
        assert body["details"] == ['File "photo" type "text/plain" not allowed. Accepted: image/*']
        blob_store.put.assert_not_called()

    def test_part_over_upload_limit_refused_before_upload(self, client, blob_store, db):
        too_big = b"x" * (10 * 1024 * 1024 + 1)

        response = client.post(
            "/api/students",
            data={"name": "Ann"},
            files={"photo": PHOTO, "transcript": ("t.pdf", too_big, "application/pdf")},
        )

        assert response.status_code == 400
        assert response.json()["details"] == ['File "transcript" exceeds the upload limit of 10MB']
        blob_store.put.assert_not_called()
        assert db["students"].count_documents({}) == 0

    def test_delete_cleans_up_blob_after_response(self, client, blob_store):
        data = _create_student(client)

        response = client.delete(f"/api/students/{data['_id']}")

        assert response.status_code == 200
        blob_store.delete.assert_called_once_with(data["photo"])

    def test_cleanup_failure_does_not_fail_request(self, client, blob_store):
        data = _create_student(client)
        blob_store.delete.side_effect = RuntimeError("bucket gone")

        assert client.delete(f"/api/students/{data['_id']}").status_code == 200


class TestErrors:
    def test_unknown_route(self, client):
        response = client.get("/api/nothing-here")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Route not found: GET /api/nothing-here"
        assert "hint" in body

    def test_storage_failure_is_500(self, app, client, monkeypatch):
        collection = app.state.registry.get("products").service.store.collection

        def broken_find(*args, **kwargs):
            raise PyMongoError("server selection timeout")
        monkeypatch.setattr(collection, "find", broken_find)

        response = client.get("/api/products")

        assert response.status_code == 500
        assert response.json()["success"] is False


class TestHomeAndDocs:
    def test_home_lists_endpoints(self, client):
        body = client.get("/").json()

        assert body["message"] == "rapid-api is running!"
        assert body["docs"] == "/api/docs"
        resources = {entry["resource"]: entry for entry in body["endpoints"]}
        assert set(resources) == {"products", "students"}
        assert "GET    /api/students/filters/:field" in resources["students"]["routes"]

    def test_openapi_document(self, client):
        spec = client.get("/api/docs.json").json()

        assert "/api/products" in spec["paths"]
        assert "/api/products/{document_id}" in spec["paths"]
        params = {p["name"] for p in spec["paths"]["/api/products"]["get"]["parameters"]}
        assert {"page", "limit", "sort", "fields", "search", "price", "price_gte"} <= params
