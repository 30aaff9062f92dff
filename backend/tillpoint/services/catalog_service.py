# Overview: Service-layer operations for the catalog; categories, products and variants with soft delete.

from __future__ import annotations

import re

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import ItemNotFound, duplicate_entry_from
from ..extensions import db
from ..models import Category, Product, Variant
from ..validation import ModelValidationPolicy, validate_payload

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "slug", "description"},
    required_on_create={"name"},
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "sku", "barcode", "description", "category_id",
        "price", "cost_price", "min_stock_level", "max_stock_level",
        "stock_quantity",
    },
    required_on_create={"name", "sku", "price"},
    money_fields={"price": "price_cents", "cost_price": "cost_cents"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "barcode", "description", "category_id",
        "price", "cost_price", "min_stock_level", "max_stock_level",
    },
    money_fields={"price": "price_cents", "cost_price": "cost_cents"},
)

VARIANT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "sku", "attributes", "price", "cost_price", "min_stock_level", "stock_quantity"},
    required_on_create={"name", "sku"},
    money_fields={"price": "price_cents", "cost_price": "cost_cents"},
)


def _commit_or_duplicate() -> None:
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        duplicate = duplicate_entry_from(exc)
        if duplicate is None:
            raise
        raise duplicate


def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


# -- Categories --

def create_category(payload: dict) -> Category:
    data = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY)
    data.setdefault("slug", _slugify(data["name"]))
    category = Category(**data)
    db.session.add(category)
    _commit_or_duplicate()
    return category


def list_categories(include_inactive: bool = False) -> list[Category]:
    query = db.session.query(Category)
    if not include_inactive:
        query = query.filter(Category.is_active.is_(True))
    return query.order_by(Category.name).all()


# -- Products --

def create_product(payload: dict) -> Product:
    """
    Create a product. Opening stock, if any, is set directly; later
    changes go through inventory_service so they land in the ledger.
    """
    data = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY)
    if data.get("category_id") is not None and not db.session.get(Category, data["category_id"]):
        raise ItemNotFound("Category not found", {"category_id": data["category_id"]})
    data["sku"] = data["sku"].upper()
    product = Product(**data)
    db.session.add(product)
    _commit_or_duplicate()
    return product


def get_product(product_id: int, *, include_inactive: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if not product or (not product.is_active and not include_inactive):
        raise ItemNotFound("Product not found", {"product_id": product_id})
    return product


def update_product(product_id: int, payload: dict) -> Product:
    product = get_product(product_id)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
    for key, value in patch.items():
        setattr(product, key, value)
    _commit_or_duplicate()
    return product


def deactivate_product(product_id: int) -> Product:
    """Soft delete: history keeps pointing at the row."""
    product = get_product(product_id)
    product.is_active = False
    db.session.commit()
    return product


def list_products(
    *,
    search: str | None = None,
    category_id: int | None = None,
    low_stock: bool = False,
    include_inactive: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Product], int]:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Product.name.ilike(pattern),
            Product.sku.ilike(pattern),
            Product.barcode == search.strip(),
        ))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if low_stock:
        query = query.filter(Product.stock_quantity <= Product.min_stock_level)

    total = query.count()
    limit = max(1, min(limit, 200))
    products = query.order_by(Product.name, Product.id).offset(max(offset, 0)).limit(limit).all()
    return products, total


def find_by_code(code: str) -> Product | Variant | None:
    """Scanner lookup: barcode first, then SKU (products, then variants)."""
    code = (code or "").strip()
    if not code:
        return None
    product = db.session.query(Product).filter(
        Product.is_active.is_(True),
        or_(Product.barcode == code, Product.sku == code.upper()),
    ).first()
    if product:
        return product
    return db.session.query(Variant).filter(
        Variant.is_active.is_(True),
        Variant.sku == code.upper(),
    ).first()


# -- Variants --

def create_variant(product_id: int, payload: dict) -> Variant:
    product = get_product(product_id)
    data = validate_payload(model=Variant, payload=payload, policy=VARIANT_POLICY)
    data["sku"] = data["sku"].upper()
    variant = Variant(product_id=product.id, **data)
    db.session.add(variant)
    _commit_or_duplicate()
    return variant


def get_variant(variant_id: int, *, include_inactive: bool = False) -> Variant:
    variant = db.session.get(Variant, variant_id)
    if not variant or (not variant.is_active and not include_inactive):
        raise ItemNotFound("Variant not found", {"variant_id": variant_id})
    return variant


def deactivate_variant(variant_id: int) -> Variant:
    variant = get_variant(variant_id)
    variant.is_active = False
    db.session.commit()
    return variant
