"""
Database Schemas for the Dijital Vitrin storefront platform

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercase class name. Example: class Product -> "product" collection.

Every document carries the tenant_id of the store that owns it; storefront
queries always filter on it.
"""

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from form_engine import FieldDescriptor

# -----------------
# Core Collections
# -----------------

class TenantSettings(BaseModel):
    primary_color: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    social_links: Dict[str, str] = Field(default_factory=dict)


class Tenant(BaseModel):
    name: str = Field(..., min_length=1, description="Store display name")
    slug: str = Field(..., pattern=r"^[a-z0-9-]+$", description="Storefront URL segment")
    whatsapp_number: str = Field(..., min_length=10, description="Number orders are sent to")
    logo_url: Optional[str] = None
    settings: TenantSettings = Field(default_factory=TenantSettings)
    is_active: bool = True


class Category(BaseModel):
    tenant_id: str = Field(..., description="Owning tenant id")
    name: str = Field(..., min_length=1, description="Category display name, e.g. 'Giyim'")
    slug: str = Field(..., pattern=r"^[a-z0-9-]+$", description="URL-friendly identifier")
    description: Optional[str] = None
    image_url: Optional[str] = None
    parent_id: Optional[str] = None
    sort_order: int = Field(0, ge=0)
    is_active: bool = True
    attribute_schema: List[FieldDescriptor] = Field(
        default_factory=list, description="Variant attributes products in this category carry"
    )


class Product(BaseModel):
    tenant_id: str = Field(..., description="Owning tenant id")
    category_id: Optional[str] = None
    name: str = Field(..., min_length=1, description="Product name")
    slug: str = Field(..., description="URL-friendly identifier")
    description: Optional[str] = None
    base_price: float = Field(..., ge=0, description="Unit price in TL")
    sale_price: Optional[float] = Field(None, ge=0, description="Discounted unit price in TL")
    sku: Optional[str] = None
    image_url: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    attributes: Dict[str, Union[str, List[str]]] = Field(default_factory=dict)
    is_active: bool = True
    is_featured: bool = False

    @field_validator("images")
    @classmethod
    def _drop_blank_images(cls, value: List[str]) -> List[str]:
        return [url for url in value if url]
