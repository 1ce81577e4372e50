"""
Storefront catalog helpers: slugs, pricing, listing filters and attribute facets.

Products are handled as plain documents (dicts) the way they come back from
the database, so these helpers work on both stored and freshly validated data.
"""
import math
import random
import string
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from form_engine import FormSchema, parse_tags

AttributeValue = Union[str, List[str]]

TURKISH_FOLD = str.maketrans({"ğ": "g", "ü": "u", "ş": "s", "ı": "i", "ö": "o", "ç": "c"})

SORT_OPTIONS = ("price_asc", "price_desc", "name_asc", "name_desc")

DEFAULT_PRICE_BOUNDS = (0, 10000)


# -----
# Slugs
# -----

def slugify(name: str) -> str:
    folded = name.lower().translate(TURKISH_FOLD)
    out = []
    for ch in folded:
        if ch in string.ascii_lowercase or ch in string.digits:
            out.append(ch)
        elif out and out[-1] != "-":
            out.append("-")
    return "".join(out).strip("-")


def product_slug(name: str, suffix: Optional[str] = None) -> str:
    """Product slugs carry a short random suffix so equal names never collide."""
    if suffix is None:
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
    return f"{slugify(name)[:50]}-{suffix}"


# -------
# Pricing
# -------

def effective_price(base_price: float, sale_price: Optional[float] = None) -> float:
    if sale_price is not None and sale_price < base_price:
        return sale_price
    return base_price


def current_price(product: Mapping[str, Any]) -> float:
    return effective_price(product.get("base_price", 0.0), product.get("sale_price"))


def has_discount(product: Mapping[str, Any]) -> bool:
    sale = product.get("sale_price")
    return sale is not None and sale < product.get("base_price", 0.0)


# ----------------
# Listing filters
# ----------------

def _created_at(product: Mapping[str, Any]) -> datetime:
    value = product.get("created_at")
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
        except ValueError:
            pass
    return datetime.min


def filter_products(
    products: Iterable[Mapping[str, Any]],
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: Optional[str] = None,
) -> List[Mapping[str, Any]]:
    selected = [
        p for p in products
        if (min_price is None or p.get("base_price", 0) >= min_price)
        and (max_price is None or p.get("base_price", 0) <= max_price)
    ]
    if sort == "price_asc":
        selected.sort(key=lambda p: p.get("base_price", 0))
    elif sort == "price_desc":
        selected.sort(key=lambda p: p.get("base_price", 0), reverse=True)
    elif sort == "name_asc":
        selected.sort(key=lambda p: p.get("name", ""))
    elif sort == "name_desc":
        selected.sort(key=lambda p: p.get("name", ""), reverse=True)
    else:
        # newest first
        selected.sort(key=_created_at, reverse=True)
    return selected


def price_bounds(products: Iterable[Mapping[str, Any]]) -> Tuple[int, int]:
    prices = [p.get("base_price", 0) for p in products]
    if not prices:
        return DEFAULT_PRICE_BOUNDS
    return math.floor(min(prices)), math.ceil(max(prices))


# ----------
# Attributes
# ----------

def attribute_facets(products: Iterable[Mapping[str, Any]]) -> Dict[str, List[str]]:
    facets: Dict[str, List[str]] = {}
    for product in products:
        for key, value in (product.get("attributes") or {}).items():
            values = value if isinstance(value, list) else [value]
            bucket = facets.setdefault(key, [])
            for v in values:
                if v not in bucket:
                    bucket.append(v)
    return facets


def build_product_attributes(schema: FormSchema, raw: Mapping[str, str]) -> Dict[str, AttributeValue]:
    """Turn dashboard form input into a product attribute map.

    Select attributes are entered as comma separated tags and stored as lists;
    every other attribute is kept as a single trimmed string. Blank entries and
    keys outside the category schema are dropped.
    """
    attributes: Dict[str, AttributeValue] = {}
    for field in schema:
        value = raw.get(field.name)
        if value is None:
            continue
        if field.kind == "select":
            tags = parse_tags(str(value))
            if tags:
                attributes[field.name] = tags
        elif str(value).strip():
            attributes[field.name] = str(value).strip()
    return attributes


def selectable_attributes(attributes: Optional[Mapping[str, AttributeValue]]) -> Dict[str, List[str]]:
    """Only multi-valued attributes are offered to the customer as a choice."""
    return {key: list(value) for key, value in (attributes or {}).items() if isinstance(value, list)}


def choose_attribute(
    selected: Mapping[str, str],
    attributes: Optional[Mapping[str, AttributeValue]],
    key: str,
    value: str,
) -> Dict[str, str]:
    options = selectable_attributes(attributes).get(key)
    if options is None:
        raise KeyError(f"Product has no selectable attribute '{key}'")
    if value not in options:
        raise ValueError(f"'{value}' is not an option for '{key}'")
    return {**selected, key: value}
