"""
Query builders for the catalog, order listings and admin analytics.

Everything here is pure: functions take request values and return Mongo
filter documents, sort specs or aggregation pipelines.
"""
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

MAX_LIMIT = 100


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_pagination(page: Any, limit: Any, default_limit: int = 20) -> Tuple[int, int, int]:
    """Return (page, limit, skip) with page >= 1 and 1 <= limit <= 100."""
    page_num = max(_to_int(page) or 1, 1)
    limit_num = min(max(_to_int(limit) or default_limit, 1), MAX_LIMIT)
    return page_num, limit_num, (page_num - 1) * limit_num


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


def paginated(items: List[dict], total: int, page: int, limit: int) -> Dict[str, Any]:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": page_count(total, limit),
        "items": items,
    }


def is_true(value: Any) -> bool:
    return str(value).lower() == "true"


def _rx(search: str) -> dict:
    return {"$regex": re.escape(search), "$options": "i"}


# ---------- Products ----------

def build_product_match(
    search: str = "",
    category: Optional[str] = None,
    status: Optional[str] = None,
    featured: Optional[str] = None,
    origin: Optional[str] = None,
    brand: Optional[str] = None,
    type_: Optional[str] = None,
    unit: Optional[str] = None,
    in_stock: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
) -> dict:
    and_: List[dict] = []

    if category:
        and_.append({"category": category})
    if status:
        and_.append({"status": status})
    if origin:
        and_.append({"originDistrict": origin})
    if brand:
        and_.append({"brand": brand})
    if type_:
        and_.append({"type": type_})
    if featured is not None:
        and_.append({"featured": is_true(featured)})

    # any variant with this unit / in stock / inside the price range
    if unit:
        and_.append({"variants.unit": unit})
    if is_true(in_stock):
        and_.append({"variants.stock": {"$gt": 0}})

    price_cond: Dict[str, float] = {}
    if min_price is not None:
        price_cond["$gte"] = min_price
    if max_price is not None:
        price_cond["$lte"] = max_price
    if price_cond:
        and_.append({"variants.price": price_cond})

    if search:
        rx = _rx(search)
        and_.append({
            "$or": [
                {"name": rx},
                {"type": rx},
                {"brand": rx},
                {"originDistrict": rx},
                {"description": rx},
                {"variants.label": rx},
            ]
        })

    return {"$and": and_} if and_ else {}


def product_sort(sort: Optional[str]) -> dict:
    if sort == "asc":
        return {"minPrice": 1, "_id": -1}
    if sort in ("des", "desc"):
        return {"minPrice": -1, "_id": -1}
    return {"_id": -1}


def product_pipeline(match: dict, sort: Optional[str], skip: int, limit: int) -> List[dict]:
    return [
        {"$match": match},
        {"$addFields": {"minPrice": {"$min": "$variants.price"}}},
        {"$sort": product_sort(sort)},
        {"$skip": skip},
        {"$limit": limit},
    ]


# ---------- Users & orders ----------

def build_user_match(search: str = "", role: Optional[str] = None) -> dict:
    query: Dict[str, Any] = {}
    if role:
        query["role"] = role
    if search:
        rx = _rx(search)
        query["$or"] = [{"name": rx}, {"email": rx}]
    return query


def build_order_match(search: str = "", status: Optional[str] = None) -> dict:
    query: Dict[str, Any] = {}
    if status:
        query["status"] = status
    if search:
        rx = _rx(search)
        query["$or"] = [
            {"shipping.name": rx},
            {"shipping.phone": rx},
            {"shipping.email": rx},
            {"userEmail": rx},
        ]
    return query


def order_sort(sort: Optional[str]) -> List[Tuple[str, int]]:
    if sort == "oldest":
        return [("_id", 1)]
    if sort == "amount_asc":
        return [("amounts.grandTotal", 1), ("_id", -1)]
    if sort == "amount_desc":
        return [("amounts.grandTotal", -1), ("_id", -1)]
    return [("_id", -1)]


# ---------- Analytics ----------

NOT_CANCELLED = {"status": {"$ne": "cancelled"}}


def revenue_pipeline() -> List[dict]:
    return [
        {"$match": NOT_CANCELLED},
        {"$group": {"_id": None, "revenue": {"$sum": "$amounts.grandTotal"}, "orders": {"$sum": 1}}},
    ]


def status_breakdown_pipeline() -> List[dict]:
    return [
        {"$group": {"_id": "$status", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ]


def day_cutoff(days: int = 30, now: Optional[datetime] = None) -> str:
    """First YYYY-MM-DD date inside the trailing window."""
    now = now or datetime.now(timezone.utc)
    return (now - timedelta(days=days - 1)).strftime("%Y-%m-%d")


def sales_by_day_pipeline() -> List[dict]:
    return [
        {"$match": NOT_CANCELLED},
        {"$group": {
            "_id": {"y": {"$year": "$createdAt"}, "m": {"$month": "$createdAt"}, "d": {"$dayOfMonth": "$createdAt"}},
            "revenue": {"$sum": "$amounts.grandTotal"},
            "orders": {"$sum": 1},
        }},
        {"$sort": {"_id.y": 1, "_id.m": 1, "_id.d": 1}},
    ]


def sales_by_month_pipeline() -> List[dict]:
    return [
        {"$match": NOT_CANCELLED},
        {"$group": {
            "_id": {"y": {"$year": "$createdAt"}, "m": {"$month": "$createdAt"}},
            "revenue": {"$sum": "$amounts.grandTotal"},
            "orders": {"$sum": 1},
        }},
        {"$sort": {"_id.y": 1, "_id.m": 1}},
    ]


def top_products_pipeline(limit: int = 5) -> List[dict]:
    return [
        {"$match": NOT_CANCELLED},
        {"$unwind": "$items"},
        {"$group": {
            "_id": "$items.productId",
            "name": {"$first": "$items.name"},
            "image": {"$first": "$items.image"},
            "qty": {"$sum": "$items.qty"},
            "revenue": {"$sum": {"$multiply": ["$items.price", "$items.qty"]}},
        }},
        {"$sort": {"qty": -1}},
        {"$limit": limit},
    ]


def top_customers_pipeline(limit: int = 5) -> List[dict]:
    return [
        {"$match": {"status": {"$ne": "cancelled"}, "userEmail": {"$ne": None}}},
        {"$group": {"_id": "$userEmail", "orders": {"$sum": 1}, "revenue": {"$sum": "$amounts.grandTotal"}}},
        {"$sort": {"revenue": -1}},
        {"$limit": limit},
    ]
