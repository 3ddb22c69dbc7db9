import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import database
import grievances
import orders
import payments
import products
import storage
from auth import Actor, get_current_user, hash_password, load_user, public_user
from config import ALLOWED_EMAIL_DOMAIN, LOG_LEVEL, PORT
from database import create_document, get_db, serialize_doc
from errors import MarketplaceError, NotFoundError
from schemas import (
    PHONE_PATTERN,
    UPI_PATTERN,
    Coordinates,
    GrievanceCategory,
    GrievancePriority,
    GrievanceStatus,
    Product as ProductSchema,
    ProductCategory,
    ProductCondition,
    User as UserSchema,
    make_initials,
)

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes(database.db)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
    yield


app = FastAPI(title="CampusCommerce API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------- Utils -----------------------
def ok(data=None, message: Optional[str] = None, **extra) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def listing(docs) -> dict:
    return ok(serialize_doc(docs), count=len(docs))


def error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, "error": code})


HTTP_ERROR_CODES = {401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return error_response(exc.status_code, exc.message, exc.code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
        problems.append(f"{field}: {err.get('msg')}" if field else err.get("msg", "Invalid request"))
    return error_response(400, "; ".join(problems) or "Invalid request", "VALIDATION_ERROR")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal server error", "INTERNAL_ERROR")


# ----------------------- Models -----------------------
class SignupBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2, max_length=100)
    email: str
    password: str = Field(..., min_length=6)
    phone: str = Field(..., pattern=PHONE_PATTERN)
    location: str = Field(..., min_length=1)


class VerifyCodeBody(BaseModel):
    email: str
    code: str = Field(..., min_length=6, max_length=6)


class LoginBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str
    password: str


class ProfileUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    location: Optional[str] = None
    upi_id: Optional[str] = None

    @field_validator("upi_id")
    @classmethod
    def validate_upi_id(cls, v):
        if v and not re.match(UPI_PATTERN, v.strip()):
            raise ValueError("Please provide a valid UPI ID (e.g. name@bank)")
        return v


class ProductCreateBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    category: ProductCategory
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    condition: ProductCondition = "Good"
    description: Optional[str] = None
    location: str = Field(..., min_length=1)
    coordinates: Optional[Coordinates] = None
    image: Optional[str] = None


class ProductUpdateBody(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    category: Optional[ProductCategory] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    condition: Optional[ProductCondition] = None
    description: Optional[str] = None
    location: Optional[str] = Field(None, min_length=1)
    coordinates: Optional[Coordinates] = None
    image: Optional[str] = None


class OrderCreateBody(BaseModel):
    product_id: str
    message: Optional[str] = ""


class OrderStatusBody(BaseModel):
    status: str


class EnableTrackingBody(BaseModel):
    pickup_coordinates: Optional[Coordinates] = None


class LocationBody(Coordinates):
    pass


class ApprovePaymentBody(BaseModel):
    approved: bool


class GrievanceCreateBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    subject: str = Field(..., min_length=1)
    category: GrievanceCategory
    description: str = Field(..., min_length=1)
    priority: Optional[GrievancePriority] = None


class GrievanceUpdateBody(BaseModel):
    status: Optional[GrievanceStatus] = None
    admin_notes: Optional[str] = None
    priority: Optional[GrievancePriority] = None


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Welcome to CampusCommerce API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/auth/signup")
def signup(body: SignupBody, db=Depends(get_db)):
    result = accounts.start_signup(db, body.name, body.email, body.password, body.phone, body.location)
    return ok(message="Verification code sent to your email!", **result)


@app.post("/auth/verify-code", status_code=201)
def verify_code(body: VerifyCodeBody, db=Depends(get_db)):
    user = accounts.verify_signup(db, body.email, body.code)
    return ok(public_user(user), message="Account created successfully! You can now login.")


@app.post("/auth/login")
def login(body: LoginBody, db=Depends(get_db)):
    token, user = accounts.login(db, body.email, body.password)
    return ok(message="Login successful!", token=token, user=public_user(user))


@app.get("/auth/me")
def me(actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    return ok(user=public_user(load_user(db, actor.id)))


@app.put("/auth/profile")
def update_profile(body: ProfileUpdateBody, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    user = accounts.update_profile(db, actor, **body.model_dump(exclude_none=True))
    return ok(message="Profile updated successfully", user=public_user(user))


# ----------------------- Products -----------------------
@app.get("/products")
def list_products(
    category: Optional[ProductCategory] = None,
    condition: Optional[ProductCondition] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    db=Depends(get_db),
):
    return listing(products.list_products(db, category, condition, search, min_price, max_price))


@app.get("/products/my-products")
@app.get("/products/mine")
def my_products(actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    return listing(products.list_owner_products(db, actor))


@app.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return ok(serialize_doc(products.get_product(db, product_id)))


@app.post("/products", status_code=201)
def create_product(body: ProductCreateBody, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    product = products.create_product(db, actor, body.model_dump(exclude_none=True))
    return ok(serialize_doc(product))


@app.put("/products/{product_id}")
def update_product(
    product_id: str, body: ProductUpdateBody, actor: Actor = Depends(get_current_user), db=Depends(get_db)
):
    product = products.update_product(db, actor, product_id, body.model_dump(exclude_none=True))
    return ok(serialize_doc(product))


@app.delete("/products/{product_id}")
def delete_product(product_id: str, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    products.delete_product(db, actor, product_id)
    return ok(message="Product deleted successfully")


@app.patch("/products/{product_id}/sold")
def mark_product_sold(product_id: str, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    return ok(serialize_doc(products.owner_mark_sold(db, actor, product_id)))


@app.delete("/products/{product_id}/admin-delist")
def admin_delist_product(product_id: str, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    product = products.delist_product(db, actor, product_id)
    return ok(serialize_doc(product), message="Product delisted successfully")


@app.post("/upload", status_code=201)
def upload_image(image: UploadFile = File(...), actor: Actor = Depends(get_current_user)):
    return ok({"url": storage.save_image(image, "product")}, message="Image uploaded successfully")


@app.get("/uploads/{filename}")
def product_image(filename: str):
    # payment screenshots are served only through /payments/{order_id}/screenshot
    if not filename.startswith("product-"):
        raise NotFoundError("File not found")
    return FileResponse(storage.resolve_upload(storage.PUBLIC_PREFIX + filename))


# ----------------------- Orders -----------------------
@app.post("/orders", status_code=201)
def create_order(body: OrderCreateBody, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    order = orders.place_order(db, actor, body.product_id, body.message or "")
    return ok(serialize_doc(order), message="Order placed successfully!")


@app.get("/orders/my-orders")
@app.get("/orders/mine")
def my_orders(actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    return listing(orders.list_buyer_orders(db, actor))


@app.get("/orders/received-orders")
@app.get("/orders/received")
def received_orders(actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    return listing(orders.list_seller_orders(db, actor))


@app.get("/orders/{order_id}")
def get_order(order_id: str, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    return ok(serialize_doc(orders.get_order_for(db, actor, order_id)))


@app.patch("/orders/{order_id}/status")
def update_order_status(
    order_id: str, body: OrderStatusBody, actor: Actor = Depends(get_current_user), db=Depends(get_db)
):
    order = orders.update_status(db, actor, order_id, body.status)
    return ok(serialize_doc(order), message="Order status updated successfully")


@app.patch("/orders/{order_id}/cancel")
def cancel_order(order_id: str, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    order = orders.cancel_order(db, actor, order_id)
    return ok(serialize_doc(order), message="Order cancelled successfully")


@app.post("/orders/{order_id}/enable-tracking")
def enable_tracking(
    order_id: str,
    body: Optional[EnableTrackingBody] = None,
    actor: Actor = Depends(get_current_user),
    db=Depends(get_db),
):
    coords = body.pickup_coordinates.model_dump() if body and body.pickup_coordinates else None
    order = orders.enable_tracking(db, actor, order_id, coords)
    return ok(serialize_doc(order), message="Live tracking enabled")


@app.patch("/orders/{order_id}/update-location")
def update_location(
    order_id: str, body: LocationBody, actor: Actor = Depends(get_current_user), db=Depends(get_db)
):
    location = orders.update_location(db, actor, order_id, body.lat, body.lng)
    return ok(serialize_doc(location), message="Location updated")


@app.get("/orders/{order_id}/tracking")
def get_tracking(order_id: str, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    return ok(serialize_doc(orders.get_tracking(db, actor, order_id)))


# ----------------------- Payments -----------------------
@app.get("/payments/{order_id}/initiate")
def initiate_payment(order_id: str, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    return ok(payments.initiate_payment(db, actor, order_id), message="Payment details retrieved")


@app.post("/payments/{order_id}/complete")
def complete_payment(
    order_id: str,
    screenshot: Optional[UploadFile] = File(None),
    transaction_id: Optional[str] = Form(None),
    actor: Actor = Depends(get_current_user),
    db=Depends(get_db),
):
    order = payments.submit_screenshot(db, actor, order_id, screenshot, transaction_id)
    return ok(serialize_doc(order), message="Payment screenshot uploaded. Waiting for seller approval.")


@app.post("/payments/{order_id}/cash")
def cash_payment(order_id: str, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    order = payments.mark_cash(db, actor, order_id)
    return ok(serialize_doc(order), message="Cash payment recorded successfully")


@app.get("/payments/{order_id}/status")
def payment_status(order_id: str, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    return ok(serialize_doc(payments.get_payment_status(db, actor, order_id)))


@app.post("/payments/{order_id}/approve")
def approve_payment(
    order_id: str, body: ApprovePaymentBody, actor: Actor = Depends(get_current_user), db=Depends(get_db)
):
    order = payments.approve_payment(db, actor, order_id, body.approved)
    message = "Payment approved successfully" if body.approved else "Payment rejected"
    return ok(serialize_doc(order), message=message)


@app.get("/payments/{order_id}/screenshot")
def payment_screenshot(order_id: str, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    return FileResponse(payments.get_screenshot_file(db, actor, order_id))


# ----------------------- Grievances -----------------------
@app.post("/grievances/submit", status_code=201)
def submit_grievance(body: GrievanceCreateBody, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    grievance = grievances.submit_grievance(
        db, actor, body.subject, body.category, body.description, body.priority
    )
    return ok(serialize_doc(grievance), message="Grievance submitted successfully. We will review it soon.")


@app.get("/grievances/my-grievances")
def my_grievances(actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    return listing(grievances.list_my_grievances(db, actor))


@app.get("/grievances/all")
def all_grievances(actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    return listing(grievances.list_all_grievances(db, actor))


@app.get("/grievances/{grievance_id}")
def get_grievance(grievance_id: str, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    return ok(serialize_doc(grievances.get_grievance_for(db, actor, grievance_id)))


@app.put("/grievances/{grievance_id}")
def update_grievance(
    grievance_id: str, body: GrievanceUpdateBody, actor: Actor = Depends(get_current_user), db=Depends(get_db)
):
    grievance = grievances.update_grievance(
        db, actor, grievance_id, status=body.status, admin_notes=body.admin_notes, priority=body.priority
    )
    return ok(serialize_doc(grievance), message="Grievance updated successfully")


@app.delete("/grievances/{grievance_id}")
def delete_grievance(grievance_id: str, actor: Actor = Depends(get_current_user), db=Depends(get_db)):
    grievances.delete_grievance(db, actor, grievance_id)
    return ok(message="Grievance deleted successfully")


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS = [
    {
        "title": "Engineering Mathematics Textbook",
        "category": "Books",
        "price": 299,
        "original_price": 599,
        "condition": "Like New",
        "description": "Complete textbook for Engineering Mathematics. All chapters covered with solved examples.",
        "location": "Campus Gate 2",
        "image": "📘",
        "rating": 4.5,
    },
    {
        "title": "HP Laptop i5 8th Gen",
        "category": "Electronics",
        "price": 25000,
        "original_price": 45000,
        "condition": "Good",
        "description": "8GB RAM, 256GB SSD, 15.6\" display. Battery backup 4-5 hours.",
        "location": "Boys Hostel",
        "image": "💻",
        "rating": 4.8,
    },
    {
        "title": "Study Table with Chair",
        "category": "Furniture",
        "price": 1500,
        "original_price": 3000,
        "condition": "Fair",
        "description": "Sturdy wooden study table with comfortable chair. Perfect for hostel rooms.",
        "location": "Girls Hostel",
        "image": "🪑",
        "rating": 4.3,
    },
    {
        "title": "Scientific Calculator",
        "category": "Stationery",
        "price": 450,
        "original_price": 800,
        "condition": "Excellent",
        "description": "Casio scientific calculator in excellent condition. All functions working perfectly.",
        "location": "Library",
        "image": "🔢",
        "rating": 4.7,
    },
    {
        "title": "Cricket Bat and Ball Set",
        "category": "Sports",
        "price": 800,
        "original_price": 1500,
        "condition": "Good",
        "description": "English willow bat with two leather balls.",
        "location": "Sports Complex",
        "image": "🏏",
        "rating": 4.4,
    },
]


@app.post("/seed")
def seed(db=Depends(get_db)):
    admin = db["user"].find_one({"is_admin": True})
    if admin is None:
        user = UserSchema(
            name="Admin",
            email=f"admin@{ALLOWED_EMAIL_DOMAIN}",
            password_hash=hash_password("password"),
            phone="0000000000",
            location="Admin Office",
            is_admin=True,
            initials=make_initials("Admin"),
        )
        admin = db["user"].find_one({"_id": database.to_object_id(create_document(db, "user", user))})
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    for p in DEMO_PRODUCTS:
        prod = ProductSchema(**p, seller=admin["name"], user_id=str(admin["_id"]), seller_email=admin["email"])
        create_document(db, "product", prod)
    return {"seeded": True, "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=PORT)
