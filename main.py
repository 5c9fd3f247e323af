import logging
import os
import smtplib
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo import UpdateOne
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
import mailer
import queries
from auth import create_token, is_admin, verify_admin, verify_token
from database import create_document, get_db
from schemas import (
    ALLOWED_ROLES,
    ORDER_STATUSES,
    ContactMessage,
    Order,
    OrderCreateRequest,
    OrderItem,
    Product,
    ProductUpdate,
    ProfileUpdate,
    Review,
    RoleUpdate,
    ShippingUpdate,
    StatusUpdate,
    TokenRequest,
    User,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.connect()
    yield
    database.close()


# App init
app = FastAPI(title="Polli Ahaar API", lifespan=lifespan)

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:5173,https://polli-ahaar.web.app")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Errors
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request payload", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("%s %s failed", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal Server Error"})


# Utils
def oid(id_str: str, detail: str = "Invalid id") -> ObjectId:
    if not ObjectId.is_valid(id_str):
        raise HTTPException(status_code=400, detail=detail)
    return ObjectId(id_str)


def _plain(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return _plain(doc)


def now() -> datetime:
    return datetime.now(timezone.utc)


def load_owned_order(db: Database, order_id: str, decoded: dict) -> dict:
    order = db["orders"].find_one({"_id": oid(order_id, "Invalid order ID")})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    email = decoded["email"].lower()
    if (order.get("userEmail") or "").lower() != email and not is_admin(db, decoded["email"]):
        raise HTTPException(status_code=403, detail="forbidden!")
    return order


# Routes
@app.get("/")
def root():
    return {"message": "Hello from Polli Ahaar Server.."}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        db = database.get_db()
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except HTTPException:
        response["database"] = "⚠️  Available but not initialized"
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


# Auth
@app.post("/jwt")
def issue_token(req: TokenRequest):
    return {"token": create_token(req.email)}


# Users
@app.post("/users")
def save_user(user: User, db: Database = Depends(get_db)):
    if db["users"].find_one({"email": user.email}):
        return {"message": "Already exist", "insertedId": None}
    doc = {**user.model_dump(), "role": "user", "timeStamp": int(time.time() * 1000)}
    return {"insertedId": create_document(db, "users", doc)}


@app.get("/user/admin/{email}")
def check_admin(email: str, decoded=Depends(verify_token), db: Database = Depends(get_db)):
    return {"admin": is_admin(db, email)}


@app.get("/user/{email}")
def get_user(email: str, decoded=Depends(verify_token), db: Database = Depends(get_db)):
    return serialize_doc(db["users"].find_one({"email": email}))


@app.get("/users")
def list_users(
    search: str = "",
    role: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    admin=Depends(verify_admin),
    db: Database = Depends(get_db),
):
    page_num, limit_num, skip = queries.parse_pagination(page, limit)
    query = queries.build_user_match(search, role)
    try:
        items = list(
            db["users"].find(query, {"password": 0}).sort("_id", -1).skip(skip).limit(limit_num)
        )
        total = db["users"].count_documents(query)
    except PyMongoError:
        logger.exception("GET /users failed")
        raise HTTPException(status_code=500, detail="Failed to fetch users")
    return queries.paginated([serialize_doc(u) for u in items], total, page_num, limit_num)


@app.patch("/user/update/{user_id}")
def update_profile(user_id: str, req: ProfileUpdate, decoded=Depends(verify_token), db: Database = Depends(get_db)):
    user = db["users"].find_one({"_id": oid(user_id)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if (user.get("email") or "").lower() != decoded["email"].lower() and not is_admin(db, decoded["email"]):
        raise HTTPException(status_code=403, detail="forbidden!")
    result = db["users"].update_one({"_id": user["_id"]}, {"$set": {**req.model_dump(exclude_unset=True), "updatedAt": now()}})
    return {"matchedCount": result.matched_count, "modifiedCount": result.modified_count}


@app.put("/user/{user_id}/role")
def update_role(user_id: str, req: RoleUpdate, admin=Depends(verify_admin), db: Database = Depends(get_db)):
    if req.role not in ALLOWED_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role")
    result = db["users"].update_one({"_id": oid(user_id)}, {"$set": {"role": req.role}})
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    return {"modifiedCount": result.modified_count, "role": req.role}


# Products
@app.post("/add-product")
def add_product(product: Product, admin=Depends(verify_admin), db: Database = Depends(get_db)):
    return {"insertedId": create_document(db, "products", product)}


@app.get("/products")
def list_products(
    search: str = "",
    category: Optional[str] = None,
    status: Optional[str] = None,
    featured: Optional[str] = None,
    origin: Optional[str] = None,
    brand: Optional[str] = None,
    type: Optional[str] = None,
    unit: Optional[str] = None,
    inStock: Optional[str] = None,
    minPrice: Optional[float] = None,
    maxPrice: Optional[float] = None,
    sort: str = "newest",
    page: Optional[str] = None,
    limit: Optional[str] = None,
    db: Database = Depends(get_db),
):
    page_num, limit_num, skip = queries.parse_pagination(page, limit)
    match = queries.build_product_match(
        search=search,
        category=category,
        status=status,
        featured=featured,
        origin=origin,
        brand=brand,
        type_=type,
        unit=unit,
        in_stock=inStock,
        min_price=minPrice,
        max_price=maxPrice,
    )
    try:
        total = db["products"].count_documents(match)
        items = list(db["products"].aggregate(queries.product_pipeline(match, sort, skip, limit_num)))
    except PyMongoError:
        logger.exception("GET /products failed")
        raise HTTPException(status_code=500, detail="Failed to fetch products")
    return queries.paginated([serialize_doc(p) for p in items], total, page_num, limit_num)


@app.get("/product/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    p = db["products"].find_one({"_id": oid(product_id)})
    if not p:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(p)


@app.put("/product/{product_id}")
def update_product(product_id: str, req: ProductUpdate, admin=Depends(verify_admin), db: Database = Depends(get_db)):
    updates = req.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No updates provided")
    updates["updatedAt"] = now()
    result = db["products"].update_one({"_id": oid(product_id)}, {"$set": updates}, upsert=True)
    return {
        "matchedCount": result.matched_count,
        "modifiedCount": result.modified_count,
        "upsertedId": str(result.upserted_id) if result.upserted_id else None,
    }


@app.delete("/product/{product_id}")
def delete_product(product_id: str, admin=Depends(verify_admin), db: Database = Depends(get_db)):
    result = db["products"].delete_one({"_id": oid(product_id)})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"deletedCount": result.deleted_count}


# Orders
def _parse_items(raw_items: Optional[List[dict]]) -> List[OrderItem]:
    if not raw_items:
        raise HTTPException(status_code=400, detail="No items provided.")
    items = []
    for it in raw_items:
        if not isinstance(it, dict) or not ObjectId.is_valid(str(it.get("productId") or "")) or not it.get("qty"):
            raise HTTPException(status_code=400, detail="Invalid item payload.")
        try:
            items.append(OrderItem(**it))
        except ValidationError:
            raise HTTPException(status_code=400, detail="Invalid item payload.")
    return items


def order_count_updates(items: List[OrderItem]) -> List[UpdateOne]:
    return [
        UpdateOne({"_id": ObjectId(i.productId)}, {"$inc": {"orderCount": i.qty}})
        for i in items
    ]


def stock_updates(items: List[OrderItem]) -> List[UpdateOne]:
    """Decrement every variant whose label matches the ordered one."""
    return [
        UpdateOne(
            {"_id": ObjectId(i.productId)},
            {"$inc": {"variants.$[v].stock": -abs(i.qty)}},
            array_filters=[{"v.label": i.variantLabel}],
        )
        for i in items
        if i.variantLabel
    ]


def _apply_order_counters(db: Database, items: List[OrderItem]) -> None:
    # best effort: the order is already stored, failures here only get logged
    try:
        db["products"].bulk_write(order_count_updates(items), ordered=False)
    except PyMongoError:
        logger.exception("orderCount update failed")

    stock_ops = stock_updates(items)
    if not stock_ops:
        return
    try:
        db["products"].bulk_write(stock_ops, ordered=False)
    except PyMongoError:
        logger.exception("variant stock update failed")


@app.post("/orders")
def create_order(req: OrderCreateRequest, decoded=Depends(verify_token), db: Database = Depends(get_db)):
    items = _parse_items(req.items)

    # totals trust the submitted prices
    subtotal = sum(i.price * i.qty for i in items)
    order = Order(
        userEmail=(req.shipping.email or decoded["email"]).lower(),
        items=items,
        productsSummary=req.productsSummary,
        shipping=req.shipping,
        payment=req.payment,
        amounts={"subtotal": subtotal, "grandTotal": subtotal},
    )
    doc = order.model_dump()
    for line in doc["items"]:
        line["productId"] = ObjectId(line["productId"])

    try:
        order_id = db["orders"].insert_one(doc).inserted_id
    except PyMongoError:
        logger.exception("POST /orders failed")
        raise HTTPException(status_code=500, detail="Failed to place order.")

    _apply_order_counters(db, items)
    return {"ok": True, "orderId": str(order_id), "message": "Order placed successfully."}


@app.get("/orders")
def list_orders(
    search: str = "",
    status: Optional[str] = None,
    sort: str = "newest",
    page: Optional[str] = None,
    limit: Optional[str] = None,
    admin=Depends(verify_admin),
    db: Database = Depends(get_db),
):
    page_num, limit_num, skip = queries.parse_pagination(page, limit)
    query = queries.build_order_match(search, status)
    try:
        total = db["orders"].count_documents(query)
        items = list(db["orders"].find(query).sort(queries.order_sort(sort)).skip(skip).limit(limit_num))
    except PyMongoError:
        logger.exception("GET /orders failed")
        raise HTTPException(status_code=500, detail="Failed to fetch orders")
    return queries.paginated([serialize_doc(o) for o in items], total, page_num, limit_num)


@app.get("/orders/my/{email}")
def my_orders(
    email: str,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    decoded=Depends(verify_token),
    db: Database = Depends(get_db),
):
    email = email.strip().lower()
    if not email:
        raise HTTPException(status_code=400, detail="Email required")
    page_num, limit_num, skip = queries.parse_pagination(page, limit, default_limit=10)
    match = {"userEmail": email}
    try:
        total = db["orders"].count_documents(match)
        items = list(db["orders"].find(match).sort("_id", -1).skip(skip).limit(limit_num))
    except PyMongoError:
        logger.exception("GET /orders/my/%s failed", email)
        raise HTTPException(status_code=500, detail="Failed to fetch orders")
    return queries.paginated([serialize_doc(o) for o in items], total, page_num, limit_num)


@app.get("/orders/{order_id}")
def get_order(order_id: str, decoded=Depends(verify_token), db: Database = Depends(get_db)):
    order = db["orders"].find_one({"_id": oid(order_id, "Invalid order ID")})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return serialize_doc(order)


@app.patch("/orders/{order_id}")
def update_shipping(order_id: str, req: ShippingUpdate, decoded=Depends(verify_token), db: Database = Depends(get_db)):
    order = load_owned_order(db, order_id, decoded)
    result = db["orders"].update_one(
        {"_id": order["_id"], "status": "pending"},
        {"$set": {"shipping": req.shipping.model_dump(), "updatedAt": now()}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=400, detail="Only pending orders can be updated")
    return {"ok": True, "modifiedCount": result.modified_count}


@app.patch("/orders/{order_id}/cancel")
def cancel_order(order_id: str, decoded=Depends(verify_token), db: Database = Depends(get_db)):
    order = load_owned_order(db, order_id, decoded)
    result = db["orders"].update_one(
        {"_id": order["_id"], "status": "pending"},
        {"$set": {"status": "cancelled", "updatedAt": now()}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=400, detail="Only pending orders can be cancelled")
    return {"ok": True, "status": "cancelled"}


@app.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, req: StatusUpdate, admin=Depends(verify_admin), db: Database = Depends(get_db)):
    status = req.status.strip().lower()
    if status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")
    result = db["orders"].update_one(
        {"_id": oid(order_id, "Invalid order ID")},
        {"$set": {"status": status, "updatedAt": now()}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"modifiedCount": result.modified_count, "status": status}


@app.delete("/orders/{order_id}")
def delete_order(order_id: str, admin=Depends(verify_admin), db: Database = Depends(get_db)):
    result = db["orders"].delete_one({"_id": oid(order_id, "Invalid order ID")})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"deletedCount": result.deleted_count}


# Reviews
@app.post("/review")
def add_review(review: Review, decoded=Depends(verify_token), db: Database = Depends(get_db)):
    order = None
    if review.orderId:
        order = load_owned_order(db, review.orderId, decoded)
        if order.get("status") not in ("delivered", "completed"):
            raise HTTPException(status_code=400, detail="Only delivered orders can be reviewed")
        if order.get("reviewed"):
            raise HTTPException(status_code=400, detail="Order already reviewed")

    doc = review.model_dump()
    doc["name"] = (review.name or "").strip() or "Anonymous"
    doc["userEmail"] = review.userEmail or decoded["email"]
    doc["createdAt"] = now()
    review_id = db["reviews"].insert_one(doc).inserted_id

    if order:
        db["orders"].update_one({"_id": order["_id"]}, {"$set": {"reviewed": True, "updatedAt": now()}})
    return {"insertedId": str(review_id)}


@app.get("/reviews")
def list_reviews(db: Database = Depends(get_db)):
    return [serialize_doc(r) for r in db["reviews"].find().sort("_id", -1)]


# Admin stats
@app.get("/admin-stats")
def admin_stats(admin=Depends(verify_admin), db: Database = Depends(get_db)):
    orders = db["orders"]
    try:
        rows = list(orders.aggregate(queries.revenue_pipeline()))
        revenue = rows[0] if rows else {}
        total_revenue = revenue.get("revenue", 0)
        paid_orders = revenue.get("orders", 0)

        status_breakdown = [
            {"status": s["_id"], "count": s["count"]}
            for s in orders.aggregate(queries.status_breakdown_pipeline())
        ]
        cutoff = queries.day_cutoff()
        sales_by_day = [
            {"date": "%04d-%02d-%02d" % (d["_id"]["y"], d["_id"]["m"], d["_id"]["d"]), "revenue": d["revenue"], "orders": d["orders"]}
            for d in orders.aggregate(queries.sales_by_day_pipeline())
        ]
        sales_by_day = [d for d in sales_by_day if d["date"] >= cutoff]
        sales_by_month = [
            {"ym": "%04d-%02d" % (m["_id"]["y"], m["_id"]["m"]), "revenue": m["revenue"], "orders": m["orders"]}
            for m in orders.aggregate(queries.sales_by_month_pipeline())
        ]
        top_products = [
            {"productId": str(p["_id"]), "name": p.get("name"), "image": p.get("image"), "qty": p["qty"], "revenue": p["revenue"]}
            for p in orders.aggregate(queries.top_products_pipeline())
        ]
        top_customers = list(orders.aggregate(queries.top_customers_pipeline()))

        totals = {
            "totalRevenue": total_revenue,
            "totalOrders": orders.count_documents({}),
            "totalUsers": db["users"].count_documents({}),
            "totalProducts": db["products"].count_documents({}),
            "avgOrderValue": total_revenue / paid_orders if paid_orders else 0,
        }
    except PyMongoError:
        logger.exception("GET /admin-stats failed")
        raise HTTPException(status_code=500, detail="Failed to fetch admin stats")

    return {
        "totals": totals,
        "statusBreakdown": status_breakdown,
        "salesByDay": sales_by_day,
        "salesByMonth": sales_by_month,
        "topProducts": top_products,
        "topCustomers": top_customers,
    }


# Contact
@app.post("/email")
def contact(req: ContactMessage):
    try:
        mailer.send_contact_message(req.name, req.email, req.message)
    except mailer.MailNotConfigured:
        raise HTTPException(status_code=503, detail="Mail relay not configured")
    except (smtplib.SMTPException, OSError):
        logger.exception("POST /email failed")
        raise HTTPException(status_code=500, detail="Failed to send message")
    return {"message": "Message received, We will get back to you shortly! "}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 5000))
    uvicorn.run(app, host="0.0.0.0", port=port)
