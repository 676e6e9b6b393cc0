import pytest
from httpx import ASGITransport, AsyncClient

from catalog.app.main import create_app

BASE = "/api/outlet/t1"


@pytest.fixture
async def client(settings, session_factory):
    app = create_app(settings, session_factory)
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest.mark.anyio
async def test_import_and_dry_run(client) -> None:
    files = {"file": ("categories.csv", b"Name*,Description\nDrinks,Cold\n,Nameless\n", "text/csv")}

    resp = await client.post(f"{BASE}/catalog/import/category/dryrun", files=files)
    assert resp.status_code == 200
    assert resp.json()["data"]["invalidRows"] == 1

    resp = await client.post(f"{BASE}/catalog/import/category", files=files)
    body = resp.json()
    assert body["ok"] is True
    assert body["data"]["createdCount"] == 1
    assert body["data"]["errors"] == [
        {"rowNumber": 3, "message": "Name is required", "errorKind": "validation"}
    ]
    assert resp.headers["X-Request-ID"]

    resp = await client.get(f"{BASE}/categories")
    assert [c["name"] for c in resp.json()["data"]] == ["Drinks"]


@pytest.mark.anyio
async def test_import_errors_use_the_error_envelope(client) -> None:
    resp = await client.post(
        f"{BASE}/catalog/import/desserts",
        files={"file": ("x.csv", b"Name*\nCake\n", "text/csv")},
    )
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"

    resp = await client.post(
        f"{BASE}/catalog/import/foodItem",
        files={"file": ("x.csv", b"Name*\nBurger\n", "text/csv")},
        headers={"X-Request-ID": "req-42"},
    )
    body = resp.json()
    assert resp.status_code == 422
    assert body["ok"] is False
    assert body["request_id"] == "req-42"
    assert "Category Name" in body["error"]["message"]


@pytest.mark.anyio
async def test_sample_and_export_are_csv(client) -> None:
    resp = await client.get(f"{BASE}/catalog/import/menu/sample")
    assert resp.headers["content-type"].startswith("text/csv")
    assert resp.text.splitlines()[0] == "Menu Type*,Name,Is Active"

    await client.post(f"{BASE}/menus/defaults")
    resp = await client.get(f"{BASE}/catalog/export/menu")
    assert "kids_special,Kids special,true" in resp.text


@pytest.mark.anyio
async def test_entity_crud_and_conflicts(client) -> None:
    resp = await client.post(f"{BASE}/categories", json={"name": "Mains"})
    assert resp.status_code == 201
    mains = resp.json()["data"]

    resp = await client.post(f"{BASE}/categories", json={"name": "mains"})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "conflict"

    resp = await client.post(
        f"{BASE}/food-items",
        json={"name": "Burger", "category_id": mains["id"], "base_price": 10},
    )
    burger = resp.json()["data"]
    assert burger["category_id"] == mains["id"]

    resp = await client.delete(f"{BASE}/categories/{mains['id']}")
    assert resp.status_code == 409

    resp = await client.patch(f"{BASE}/categories/{mains['id']}", json={"parent_id": mains["id"]})
    assert resp.status_code == 422

    resp = await client.patch(f"{BASE}/food-items/{burger['id']}", json={"base_price": 12})
    assert resp.json()["data"]["base_price"] == 12

    resp = await client.delete(f"{BASE}/food-items/{burger['id']}")
    assert resp.status_code == 200
    resp = await client.delete(f"{BASE}/categories/{mains['id']}")
    assert resp.status_code == 200


@pytest.mark.anyio
async def test_menu_routes(client) -> None:
    resp = await client.post(f"{BASE}/menus", json={"menu_type": "brunch"})
    assert resp.status_code == 201

    resp = await client.patch(f"{BASE}/menus/brunch/active", json={"active": False})
    assert resp.json()["data"] == {"menu_type": "brunch", "is_active": False, "created": False}

    resp = await client.get(f"{BASE}/menus")
    assert resp.json()["data"][0]["is_active"] is False

    resp = await client.delete(f"{BASE}/menus/breakfast")
    assert resp.status_code == 409
    resp = await client.delete(f"{BASE}/menus/brunch")
    assert resp.status_code == 200


@pytest.mark.anyio
async def test_metrics_endpoint(client) -> None:
    resp = await client.get("/metrics")
    assert resp.status_code == 200
    assert "catalog_import_rows_total" in resp.text
