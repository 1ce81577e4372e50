import logging
import os
from typing import Any, Dict, List, Optional, get_args

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import AliasChoices, BaseModel, Field

from analytics import EventType
from cart_store import CartItem, cart_items_to_order_items
from catalog import (
    SORT_OPTIONS,
    attribute_facets,
    build_product_attributes,
    current_price,
    filter_products,
    has_discount,
    price_bounds,
    product_slug,
    selectable_attributes,
    slugify,
)
from database import db, create_document, get_documents
from form_engine import SchemaError, compile_schema, form_defaults, load_schema, render_fields, validate_attribute_schema
from schemas import Category, Product, Tenant
from whatsapp import build_contact_url, build_order_message, build_whatsapp_url, generate_order_reference

logger = logging.getLogger(__name__)

EVENT_TYPES = get_args(EventType)

app = FastAPI(title="Dijital Vitrin API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Helpers

def to_str_id(doc: dict):
    if not doc:
        return doc
    d = doc.copy()
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id")


def require_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db


def get_tenant(slug: str) -> dict:
    doc = require_db()["tenant"].find_one({"slug": slug, "is_active": True})
    if not doc:
        raise HTTPException(status_code=404, detail="Store not found")
    return to_str_id(doc)


def record_order_event(tenant_id: str, event_type: str, payload: Dict[str, Any]) -> bool:
    """Store an order event. Returns False when there is no database and the event was only logged."""
    if db is None:
        logger.info("Order event", extra={"tenant_id": tenant_id, "event_type": event_type})
        return False
    create_document("order_event", {"tenant_id": tenant_id, "event_type": event_type, "payload": payload})
    return True


def record_order_event_quietly(tenant_id: str, event_type: str, payload: Dict[str, Any]) -> None:
    try:
        record_order_event(tenant_id, event_type, payload)
    except Exception as exc:
        logger.warning("Order event could not be recorded", extra={"tenant_id": tenant_id, "error": str(exc)})


# Seed helpers (idempotent)

def _seed_payload():
    tenant = {
        "name": "Demo Butik",
        "slug": "demo-butik",
        "whatsapp_number": "+90 (555) 123-4567",
        "settings": {"location": "İstanbul", "description": "Günlük giyim ve aksesuar"},
        "is_active": True,
    }
    categories = [
        {
            "name": "Giyim",
            "slug": "giyim",
            "sort_order": 0,
            "is_active": True,
            "attribute_schema": [
                {"key": "Beden", "type": "select", "required": True, "options": "S, M, L, XL"},
                {"key": "Renk", "type": "select", "options": "Siyah, Beyaz, Lacivert"},
                {"key": "Kumaş", "type": "text"},
            ],
        },
        {
            "name": "Aksesuar",
            "slug": "aksesuar",
            "sort_order": 1,
            "is_active": True,
            "attribute_schema": [{"key": "Renk", "type": "select", "options": "Siyah, Kahverengi"}],
        },
    ]
    products = [
        {
            "category": "giyim",
            "name": "Basic Tişört",
            "base_price": 349.9,
            "attributes": {"Beden": ["S", "M", "L", "XL"], "Renk": ["Siyah", "Beyaz"], "Kumaş": "Pamuk"},
            "is_featured": True,
        },
        {
            "category": "giyim",
            "name": "Keten Gömlek",
            "base_price": 899.0,
            "sale_price": 749.0,
            "attributes": {"Beden": ["M", "L"], "Renk": ["Lacivert"], "Kumaş": "Keten"},
        },
        {
            "category": "aksesuar",
            "name": "Deri Kemer",
            "base_price": 1250.0,
            "attributes": {"Renk": ["Siyah", "Kahverengi"]},
        },
    ]
    return tenant, categories, products


def ensure_seeded() -> dict:
    created = {"tenants": 0, "categories": 0, "products": 0}
    if db is None:
        return created
    tenant, categories, products = _seed_payload()
    try:
        if db["tenant"].count_documents({"slug": tenant["slug"]}) > 0:
            return created
        tenant_id = create_document("tenant", Tenant(**tenant))
        created["tenants"] = 1
        category_ids = {}
        for c in categories:
            category = Category(tenant_id=tenant_id, **c)
            validate_attribute_schema(category.attribute_schema)
            category_ids[c["slug"]] = create_document("category", category)
            created["categories"] += 1
        for p in products:
            data = dict(p)
            category_slug = data.pop("category")
            product = Product(
                tenant_id=tenant_id,
                category_id=category_ids[category_slug],
                slug=product_slug(data["name"]),
                **data,
            )
            create_document("product", product)
            created["products"] += 1
    except Exception as exc:
        # Best-effort; don't crash on seed failure
        logger.warning("Seeding demo store failed", extra={"error": str(exc)})
    else:
        logger.info("Seeded demo store", extra=created)
    return created

# ---------
# Root/Test
# ---------

@app.get("/")
def read_root():
    return {"message": "Dijital Vitrin API is running"}

@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    if db is not None:
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response

# ---------------
# Storefront Endpoints
# ---------------

@app.get("/api/tenants/{tenant_slug}")
def read_tenant(tenant_slug: str):
    return get_tenant(tenant_slug)

@app.get("/api/tenants/{tenant_slug}/contact")
def tenant_contact_link(tenant_slug: str):
    tenant = get_tenant(tenant_slug)
    return {"url": build_contact_url(tenant["whatsapp_number"], tenant["name"])}

@app.get("/api/tenants/{tenant_slug}/categories")
def list_categories(tenant_slug: str):
    tenant = get_tenant(tenant_slug)
    docs = get_documents("category", {"tenant_id": tenant["id"], "is_active": True, "deleted_at": None})
    docs.sort(key=lambda c: c.get("sort_order", 0))
    return [to_str_id(d) for d in docs]

@app.get("/api/tenants/{tenant_slug}/categories/{category_slug}/products")
def list_category_products(
    tenant_slug: str,
    category_slug: str,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    sort: Optional[str] = None,
):
    tenant = get_tenant(tenant_slug)
    category = db["category"].find_one({"tenant_id": tenant["id"], "slug": category_slug})
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    if sort not in SORT_OPTIONS:
        sort = None

    docs = get_documents(
        "product",
        {"tenant_id": tenant["id"], "category_id": str(category["_id"]), "is_active": True, "deleted_at": None},
    )
    low, high = price_bounds(docs)
    return {
        "category": to_str_id(category),
        "products": [to_str_id(p) for p in filter_products(docs, min_price, max_price, sort)],
        "price_bounds": {"min": low, "max": high},
        "facets": attribute_facets(docs),
    }

@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    require_db()
    doc = None
    if ObjectId.is_valid(product_id):
        doc = db["product"].find_one({"_id": ObjectId(product_id)})
    if doc is None:
        # Try by slug (client may pass slug)
        doc = db["product"].find_one({"slug": product_id})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    product = to_str_id(doc)
    product["current_price"] = current_price(product)
    product["has_discount"] = has_discount(product)
    product["selectable_attributes"] = selectable_attributes(product.get("attributes"))
    return product

# ---------------
# Dashboard Endpoints
# ---------------

class CreateCategory(Category):
    slug: Optional[str] = Field(None, pattern=r"^[a-z0-9-]+$")

@app.post("/api/categories", status_code=201)
def create_category(payload: CreateCategory):
    try:
        validate_attribute_schema(payload.attribute_schema)
    except SchemaError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    require_db()
    data = payload.model_dump()
    data["slug"] = payload.slug or slugify(payload.name)
    inserted_id = create_document("category", data)
    return {"id": inserted_id, "slug": data["slug"]}

class CreateProduct(Product):
    slug: Optional[str] = None
    attribute_input: Dict[str, str] = Field(
        default_factory=dict, description="Raw attribute form values; select attributes as comma separated tags"
    )

@app.post("/api/products", status_code=201)
def create_product(payload: CreateProduct):
    require_db()
    data = payload.model_dump(exclude={"attribute_input"})
    data["slug"] = payload.slug or product_slug(payload.name)
    if payload.attribute_input:
        if not payload.category_id:
            raise HTTPException(status_code=400, detail="attribute_input needs a category_id")
        category = db["category"].find_one({"_id": oid(payload.category_id), "tenant_id": payload.tenant_id})
        if not category:
            raise HTTPException(status_code=404, detail="Category not found")
        schema = load_schema(category.get("attribute_schema") or [])
        data["attributes"] = {**data["attributes"], **build_product_attributes(schema, payload.attribute_input)}
    inserted_id = create_document("product", data)
    return {"id": inserted_id, "slug": data["slug"]}

# -------------------------
# Dynamic form endpoints
# -------------------------

class FormRequest(BaseModel):
    fields: List[Dict[str, Any]]
    values: Dict[str, Any] = Field(default_factory=dict)

@app.post("/api/forms/render")
def render_form(payload: FormRequest):
    try:
        validator = compile_schema(payload.fields)
    except SchemaError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {
        "defaults": form_defaults(validator.schema),
        "fields": [f.model_dump() for f in render_fields(validator.schema)],
    }

@app.post("/api/forms/validate")
def validate_form(payload: FormRequest):
    try:
        validator = compile_schema(payload.fields)
    except SchemaError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    result = validator.validate(payload.values)
    if not result.success:
        raise HTTPException(
            status_code=422,
            detail={
                "errors": result.errors,
                "fields": [f.model_dump() for f in render_fields(validator.schema, result.errors)],
            },
        )
    return {"success": True, "data": result.data}

# ---------------
# Order intent / analytics
# ---------------

class EventIn(BaseModel):
    tenant_id: Optional[str] = None
    event_type: Optional[str] = Field(None, validation_alias=AliasChoices("event_type", "type"))
    cart_data: Optional[Dict[str, Any]] = None
    payload: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

@app.post("/api/events")
def create_event(event: EventIn):
    if not event.event_type or not event.tenant_id:
        raise HTTPException(status_code=400, detail="event_type and tenant_id are required")
    if event.event_type not in EVENT_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown event_type '{event.event_type}'")
    payload = event.cart_data or event.payload or event.metadata or {}
    try:
        stored = record_order_event(event.tenant_id, event.event_type, payload)
    except Exception as exc:
        logger.warning("Order event could not be recorded", extra={"tenant_id": event.tenant_id, "error": str(exc)})
        raise HTTPException(status_code=500, detail="Event could not be recorded")
    if not stored:
        return {"success": True, "logged": True}
    return {"success": True}

class WhatsAppOrderRequest(BaseModel):
    tenant_id: str
    store_name: str
    phone_number: str
    items: List[CartItem]
    order_reference: Optional[str] = None

@app.post("/api/orders/whatsapp")
def create_whatsapp_order(payload: WhatsAppOrderRequest, background_tasks: BackgroundTasks):
    if not payload.items:
        raise HTTPException(status_code=400, detail="Cart is empty")
    if any(item.quantity < 1 for item in payload.items):
        raise HTTPException(status_code=400, detail="Quantities must be at least 1")

    lines = cart_items_to_order_items(payload.items)
    total = sum(item.line_total for item in payload.items)
    reference = payload.order_reference or generate_order_reference()
    url = build_whatsapp_url(payload.phone_number, payload.store_name, lines, total, reference)

    # the redirect never waits on analytics
    background_tasks.add_task(
        record_order_event_quietly,
        payload.tenant_id,
        "initiated",
        {"items": [line.model_dump() for line in lines], "total": total},
    )
    return {
        "url": url,
        "message": build_order_message(payload.store_name, lines, total, reference),
        "order_reference": reference,
        "total": total,
    }

# ---------------
# Seed demo data
# ---------------

@app.post("/api/seed")
def seed_demo():
    """Seed a demo store with categories and sample products if it does not exist yet."""
    created = ensure_seeded()
    return {"seeded": created}

# Auto-seed on startup if empty (idempotent)

@app.on_event("startup")
async def startup_event():
    ensure_seeded()

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
