# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..services import catalog_service
from ..decorators import require_auth, require_permission


products_bp = Blueprint("products", __name__, url_prefix="/api")


def _flag(name: str) -> bool:
    return request.args.get(name, "").lower() in {"1", "true", "yes"}


@products_bp.get("/categories")
@require_auth
@require_permission("VIEW_CATALOG")
def list_categories_route():
    categories = catalog_service.list_categories(include_inactive=_flag("include_inactive"))
    return jsonify({"categories": [c.to_dict() for c in categories]}), 200


@products_bp.post("/categories")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def create_category_route():
    category = catalog_service.create_category(request.get_json(silent=True))
    return jsonify({"category": category.to_dict()}), 201


@products_bp.get("/products")
@require_auth
@require_permission("VIEW_CATALOG")
def list_products_route():
    """
    List active products.

    Query: search, category_id, low_stock, include_inactive, limit, offset
    """
    products, total = catalog_service.list_products(
        search=request.args.get("search"),
        category_id=request.args.get("category_id", type=int),
        low_stock=_flag("low_stock"),
        include_inactive=_flag("include_inactive"),
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({
        "products": [p.to_dict() for p in products],
        "total": total,
    }), 200


@products_bp.get("/products/lookup/<code>")
@require_auth
@require_permission("VIEW_CATALOG")
def lookup_product_route(code: str):
    """Barcode / SKU scan."""
    found = catalog_service.find_by_code(code)
    if found is None:
        return jsonify({"kind": "ItemNotFound", "error": "No product or variant with this code"}), 404
    key = "product" if found.__tablename__ == "products" else "variant"
    return jsonify({key: found.to_dict()}), 200


@products_bp.post("/products")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def create_product_route():
    product = catalog_service.create_product(request.get_json(silent=True))
    return jsonify({"product": product.to_dict()}), 201


@products_bp.get("/products/<int:product_id>")
@require_auth
@require_permission("VIEW_CATALOG")
def get_product_route(product_id: int):
    product = catalog_service.get_product(product_id)
    return jsonify({"product": product.to_dict(include_variants=True)}), 200


@products_bp.patch("/products/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def update_product_route(product_id: int):
    product = catalog_service.update_product(product_id, request.get_json(silent=True))
    return jsonify({"product": product.to_dict()}), 200


@products_bp.delete("/products/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def deactivate_product_route(product_id: int):
    """Soft delete."""
    product = catalog_service.deactivate_product(product_id)
    return jsonify({"product": product.to_dict()}), 200


@products_bp.post("/products/<int:product_id>/variants")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def create_variant_route(product_id: int):
    variant = catalog_service.create_variant(product_id, request.get_json(silent=True))
    return jsonify({"variant": variant.to_dict()}), 201


@products_bp.get("/variants/<int:variant_id>")
@require_auth
@require_permission("VIEW_CATALOG")
def get_variant_route(variant_id: int):
    variant = catalog_service.get_variant(variant_id)
    return jsonify({"variant": variant.to_dict()}), 200


@products_bp.delete("/variants/<int:variant_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def deactivate_variant_route(variant_id: int):
    variant = catalog_service.deactivate_variant(variant_id)
    return jsonify({"variant": variant.to_dict()}), 200
