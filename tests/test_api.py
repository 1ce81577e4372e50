from datetime import datetime
from urllib.parse import unquote

from bson import ObjectId

import main

SIZE_FIELD = {"name": "size", "type": "select", "label": "Size", "required": True, "options": ["S", "M", "L"]}

CART_ITEMS = [
    {"product": {"id": "p1", "name": "Basic Tişört", "base_price": 100.0}, "quantity": 2,
     "selected_attributes": {"Beden": "M"}},
    {"product": {"id": "p2", "name": "Keten Gömlek", "base_price": 100.0, "sale_price": 80.0}, "quantity": 1},
]


def seed_store(fake_db):
    tenant_id = ObjectId()
    category_id = ObjectId()
    fake_db["tenant"].docs.append(
        {"_id": tenant_id, "name": "Demo Butik", "slug": "demo-butik", "whatsapp_number": "+90 555 123 45 67",
         "is_active": True}
    )
    fake_db["category"].docs.extend(
        [
            {"_id": category_id, "tenant_id": str(tenant_id), "name": "Giyim", "slug": "giyim", "sort_order": 1,
             "is_active": True, "attribute_schema": [{"name": "Beden", "kind": "select", "options": ["S", "M"]}]},
            {"_id": ObjectId(), "tenant_id": str(tenant_id), "name": "Yeni", "slug": "yeni", "sort_order": 0,
             "is_active": True},
            {"_id": ObjectId(), "tenant_id": "other", "name": "Başka", "slug": "giyim", "sort_order": 0,
             "is_active": True},
        ]
    )
    fake_db["product"].docs.extend(
        [
            {"_id": ObjectId(), "tenant_id": str(tenant_id), "category_id": str(category_id), "name": "Tişört",
             "slug": "tisort-x1y2z3", "base_price": 100.0, "sale_price": 80.0, "is_active": True,
             "created_at": datetime(2024, 1, 1), "attributes": {"Beden": ["S", "M"], "Kumaş": "Pamuk"}},
            {"_id": ObjectId(), "tenant_id": str(tenant_id), "category_id": str(category_id), "name": "Gömlek",
             "slug": "gomlek-x1y2z3", "base_price": 400.0, "is_active": True, "created_at": datetime(2024, 2, 1),
             "attributes": {"Beden": ["M", "L"]}},
            {"_id": ObjectId(), "tenant_id": str(tenant_id), "category_id": str(category_id), "name": "Eski",
             "slug": "eski-x1y2z3", "base_price": 50.0, "is_active": False},
        ]
    )
    return tenant_id, category_id


def test_read_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Dijital Vitrin API is running"}


def test_database_status_without_database(client):
    response = client.get("/test")
    assert response.status_code == 200
    assert response.json()["database"] == "❌ Not Available"


def test_storefront_needs_database(client):
    response = client.get("/api/tenants/demo-butik")
    assert response.status_code == 500


def test_read_tenant(fake_db, client):
    seed_store(fake_db)
    response = client.get("/api/tenants/demo-butik")
    assert response.status_code == 200
    assert response.json()["name"] == "Demo Butik"


def test_unknown_tenant_is_404(fake_db, client):
    assert client.get("/api/tenants/nope").status_code == 404


def test_tenant_contact_link(fake_db, client):
    seed_store(fake_db)
    url = client.get("/api/tenants/demo-butik/contact").json()["url"]
    assert url.startswith("https://wa.me/905551234567?text=")
    assert "Demo Butik" in unquote(url)


def test_categories_are_tenant_scoped_and_sorted(fake_db, client):
    seed_store(fake_db)
    response = client.get("/api/tenants/demo-butik/categories")
    assert [c["slug"] for c in response.json()] == ["yeni", "giyim"]


def test_category_products_with_filters(fake_db, client):
    seed_store(fake_db)
    response = client.get(
        "/api/tenants/demo-butik/categories/giyim/products", params={"minPrice": 90, "sort": "price_desc"}
    )
    assert response.status_code == 200
    body = response.json()
    assert [p["name"] for p in body["products"]] == ["Gömlek", "Tişört"]
    assert body["price_bounds"] == {"min": 100, "max": 400}
    assert body["facets"] == {"Beden": ["S", "M", "L"], "Kumaş": ["Pamuk"]}


def test_unknown_sort_falls_back_to_newest(fake_db, client):
    seed_store(fake_db)
    body = client.get("/api/tenants/demo-butik/categories/giyim/products", params={"sort": "random"}).json()
    assert [p["name"] for p in body["products"]] == ["Gömlek", "Tişört"]


def test_unknown_category_is_404(fake_db, client):
    seed_store(fake_db)
    assert client.get("/api/tenants/demo-butik/categories/none/products").status_code == 404


def test_get_product_by_slug(fake_db, client):
    seed_store(fake_db)
    body = client.get("/api/products/tisort-x1y2z3").json()
    assert body["current_price"] == 80.0
    assert body["has_discount"] is True
    assert body["selectable_attributes"] == {"Beden": ["S", "M"]}


def test_create_category_rejects_select_without_options(client):
    response = client.post(
        "/api/categories",
        json={"tenant_id": "t1", "name": "Giyim", "attribute_schema": [{"key": "Renk", "type": "select"}]},
    )
    assert response.status_code == 400


def test_create_category_generates_slug(fake_db, client):
    response = client.post(
        "/api/categories",
        json={"tenant_id": "t1", "name": "Kadın Giyim",
              "attribute_schema": [{"key": "Beden", "type": "select", "options": "S, M"}]},
    )
    assert response.status_code == 201
    assert response.json()["slug"] == "kadin-giyim"
    collection, doc = fake_db.created[-1]
    assert collection == "category"
    assert [o["value"] for o in doc["attribute_schema"][0]["options"]] == ["S", "M"]


def test_create_product_builds_attributes_from_category_schema(fake_db, client):
    tenant_id, category_id = seed_store(fake_db)
    response = client.post(
        "/api/products",
        json={"tenant_id": str(tenant_id), "category_id": str(category_id), "name": "Yeni Tişört",
              "base_price": 150, "attribute_input": {"Beden": "S, M"}},
    )
    assert response.status_code == 201
    assert response.json()["slug"].startswith("yeni-tisort-")
    collection, doc = fake_db.created[-1]
    assert collection == "product"
    assert doc["attributes"] == {"Beden": ["S", "M"]}
    assert "attribute_input" not in doc


def test_render_form(client):
    response = client.post("/api/forms/render", json={"fields": [SIZE_FIELD, {"name": "qty", "type": "number"}]})
    assert response.status_code == 200
    body = response.json()
    assert body["defaults"] == {"size": "", "qty": 0}
    assert [f["widget"] for f in body["fields"]] == ["select", "number"]


def test_validate_form_errors(client):
    response = client.post("/api/forms/validate", json={"fields": [SIZE_FIELD], "values": {"size": "XL"}})
    assert response.status_code == 422
    detail = response.json()["detail"]
    assert "size" in detail["errors"]
    assert detail["fields"][0]["error"]


def test_validate_form_success(client):
    response = client.post("/api/forms/validate", json={"fields": [SIZE_FIELD], "values": {"size": "M"}})
    assert response.status_code == 200
    assert response.json() == {"success": True, "data": {"size": "M"}}


def test_malformed_form_schema(client):
    response = client.post("/api/forms/validate", json={"fields": [{"name": "a"}, {"name": "a"}], "values": {}})
    assert response.status_code == 400


def test_event_requires_tenant_and_type(client):
    assert client.post("/api/events", json={"event_type": "initiated"}).status_code == 400
    assert client.post("/api/events", json={"tenant_id": "t1"}).status_code == 400


def test_event_rejects_unknown_type(client):
    response = client.post("/api/events", json={"tenant_id": "t1", "event_type": "refunded"})
    assert response.status_code == 400


def test_event_without_database_is_logged(client):
    response = client.post("/api/events", json={"type": "order_initiated", "tenant_id": "t1", "metadata": {"a": 1}})
    assert response.status_code == 200
    assert response.json() == {"success": True, "logged": True}


def test_event_is_stored(fake_db, client):
    response = client.post(
        "/api/events", json={"tenant_id": "t1", "event_type": "initiated", "cart_data": {"total": 280}}
    )
    assert response.json() == {"success": True}
    assert fake_db.created == [("order_event", {"tenant_id": "t1", "event_type": "initiated", "payload": {"total": 280}})]


def test_event_store_failure(fake_db, client, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(main, "create_document", broken)
    response = client.post("/api/events", json={"tenant_id": "t1", "event_type": "completed"})
    assert response.status_code == 500


def test_whatsapp_order(client, monkeypatch):
    recorded = []
    monkeypatch.setattr(main, "record_order_event", lambda *args: recorded.append(args) or True)
    response = client.post(
        "/api/orders/whatsapp",
        json={"tenant_id": "t1", "store_name": "Demo Butik", "phone_number": "00905551234567",
              "items": CART_ITEMS, "order_reference": "SIP-1"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 280
    assert body["order_reference"] == "SIP-1"
    assert body["url"].startswith("https://wa.me/905551234567?text=")
    assert unquote(body["url"].split("?text=", 1)[1]) == body["message"]
    assert "• Basic Tişört (x2) (Beden: M) - 100 TL" in body["message"]
    ((tenant_id, event_type, payload),) = recorded
    assert (tenant_id, event_type) == ("t1", "initiated")
    assert payload["total"] == 280


def test_whatsapp_order_ignores_event_failure(client, monkeypatch):
    def broken(*args):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(main, "record_order_event", broken)
    response = client.post(
        "/api/orders/whatsapp",
        json={"tenant_id": "t1", "store_name": "Demo Butik", "phone_number": "905551234567", "items": CART_ITEMS},
    )
    assert response.status_code == 200
    assert response.json()["order_reference"].startswith("SIP-")


def test_whatsapp_order_rejects_empty_cart(client):
    response = client.post(
        "/api/orders/whatsapp",
        json={"tenant_id": "t1", "store_name": "Demo Butik", "phone_number": "905551234567", "items": []},
    )
    assert response.status_code == 400


def test_seed_without_database(client):
    assert client.post("/api/seed").json() == {"seeded": {"tenants": 0, "categories": 0, "products": 0}}


def test_seed_creates_demo_store(fake_db, client):
    body = client.post("/api/seed").json()
    assert body == {"seeded": {"tenants": 1, "categories": 2, "products": 3}}
    collection, tenant = fake_db.created[0]
    assert collection == "tenant"
    assert tenant["slug"] == "demo-butik"
    assert tenant["settings"]["location"] == "İstanbul"
    assert tenant["settings"]["social_links"] == {}
