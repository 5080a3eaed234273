import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import get_current_user, hash_password, sign_token, verify_password
from cart import CartEngine
from config import configure_logging
from context import AppContext, build_context
from database import create_document, ensure_indexes, get_documents, parse_object_id, to_str_id, utcnow
from errors import ApiError, Conflict, InvalidInput, NotFound, Unauthenticated
from otp import OtpLedger, normalize_email
from schemas import (
    CartItemRequest,
    Category,
    CategoryCreate,
    FormSubmission,
    LoginRequest,
    NewsletterRequest,
    Order,
    OrderCreate,
    Product,
    ProductCreate,
    ProductUpdate,
    RegisterRequest,
    SendOtpRequest,
    User,
    VerifyOtpRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# Dependencies

def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_cart_engine(ctx: AppContext = Depends(get_context)) -> CartEngine:
    return CartEngine(ctx)


def get_otp_ledger(ctx: AppContext = Depends(get_context)) -> OtpLedger:
    return OtpLedger(ctx)


# Utilities

def object_id_or_400(value: str, label: str) -> ObjectId:
    oid = parse_object_id(value)
    if oid is None:
        raise InvalidInput(f"Invalid {label} ID format")
    return oid


def get_product_or_404(ctx: AppContext, product_id: str) -> dict:
    prod = ctx.db["product"].find_one({"_id": object_id_or_400(product_id, "product")})
    if not prod:
        raise NotFound("Product not found")
    return prod


def validate_category_id(ctx: AppContext, category_id: str):
    oid = parse_object_id(category_id)
    if oid is None:
        raise InvalidInput("Invalid category ID format")
    if not ctx.db["category"].find_one({"_id": oid}):
        raise InvalidInput("Invalid category ID")


def public_user(doc: dict) -> dict:
    user = to_str_id(doc)
    user.pop("password_hash", None)
    return user


def list_response(docs) -> dict:
    data = [to_str_id(d) for d in docs]
    return {"success": True, "count": len(data), "data": data}


def issue_token(ctx: AppContext, user: dict) -> str:
    return sign_token(
        {"user_id": str(user["_id"]), "email": user["email"], "name": user["name"]},
        ctx.settings,
    )


# -----------------------------
# Service
# -----------------------------

@router.get("/")
def read_root():
    return {
        "message": "SM Furnishing Store API",
        "endpoints": {
            "GET /api/products": "Get all products",
            "POST /api/products": "Create new product",
            "GET /api/products/:id": "Get single product",
            "PUT /api/products/:id": "Update product",
            "DELETE /api/products/:id": "Delete product",
            "GET /api/categories": "Get all categories",
            "POST /api/categories": "Create new category",
            "GET /api/categories/:id": "Get single category",
            "DELETE /api/categories/:id": "Delete category",
            "POST /api/users/register": "Register a user",
            "POST /api/users/login": "Log in",
            "GET /api/users/me": "Current user",
            "GET /api/cart": "Get the active cart",
            "POST /api/cart/add": "Add an item to the cart",
            "PUT /api/cart/update": "Set the quantity of a cart item",
            "DELETE /api/cart/item/:productId": "Remove a cart item",
            "DELETE /api/cart/clear": "Empty the cart",
            "POST /api/send-otp": "Email a verification code",
            "POST /api/verify-otp": "Verify an emailed code",
            "POST /api/form-data": "Submit the contact form",
            "POST /api/newsletter": "Subscribe to the newsletter",
            "POST /api/orders": "Record an order",
            "GET /health": "Health check",
        },
    }


@router.get("/health")
def health(ctx: AppContext = Depends(get_context)):
    return {
        "status": "OK",
        "message": "Server is running",
        "database": "Connected" if ctx.db is not None else "Disconnected",
    }


@router.get("/test")
def test_database(ctx: AppContext = Depends(get_context)):
    """Test endpoint to check if database is available and accessible"""
    db = ctx.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = db.name if hasattr(db, 'name') else "✅ Connected"
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"

    return response


# -----------------------------
# Users
# -----------------------------

@router.post("/api/users/register", status_code=201)
def register(payload: RegisterRequest, ctx: AppContext = Depends(get_context)):
    email = normalize_email(payload.email)
    if ctx.db["user"].find_one({"email": email}):
        raise Conflict("User with this email already exists")

    user = User(
        name=payload.name.strip(),
        email=email,
        password_hash=hash_password(payload.password),
    )
    try:
        user_id = create_document(ctx.db, "user", user)
    except DuplicateKeyError:
        raise Conflict("User with this email already exists")

    doc = ctx.db["user"].find_one({"_id": ObjectId(user_id)})
    logger.info("New user registered: %s", email)
    return {
        "success": True,
        "message": "User registered successfully",
        "token": issue_token(ctx, doc),
        "user": public_user(doc),
    }


@router.post("/api/users/login")
def login(payload: LoginRequest, ctx: AppContext = Depends(get_context)):
    doc = ctx.db["user"].find_one({"email": normalize_email(payload.email)})
    if not doc or not verify_password(payload.password, doc.get("password_hash", "")):
        raise Unauthenticated("Invalid email or password")
    return {
        "success": True,
        "message": "Login successful",
        "token": issue_token(ctx, doc),
        "user": public_user(doc),
    }


@router.get("/api/users/me")
def me(claims: dict = Depends(get_current_user), ctx: AppContext = Depends(get_context)):
    oid = parse_object_id(claims["user_id"])
    doc = ctx.db["user"].find_one({"_id": oid}) if oid else None
    if not doc:
        raise NotFound("User not found")
    return {"success": True, "user": public_user(doc)}


# -----------------------------
# Products
# -----------------------------

@router.get("/api/products")
def list_products(category_id: Optional[str] = None, ctx: AppContext = Depends(get_context)):
    filt = {"category_id": category_id} if category_id else {}
    return list_response(get_documents(ctx.db, "product", filt))


@router.post("/api/products", status_code=201)
def create_product(payload: ProductCreate, ctx: AppContext = Depends(get_context)):
    if payload.category_id:
        validate_category_id(ctx, payload.category_id)

    product = Product(
        category_id=payload.category_id or None,
        name=payload.name.strip(),
        description=payload.description.strip(),
        price=payload.price,
        stock=payload.stock,
        status=payload.status or "Active",
        image_url=payload.image_url or "",
    )
    product_id = create_document(ctx.db, "product", product)
    created = ctx.db["product"].find_one({"_id": ObjectId(product_id)})
    logger.info("New product added: %s", product.name)
    return {"success": True, "message": "Product created successfully", "data": to_str_id(created)}


@router.get("/api/products/{product_id}")
def get_product(product_id: str, ctx: AppContext = Depends(get_context)):
    return {"success": True, "data": to_str_id(get_product_or_404(ctx, product_id))}


@router.put("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, ctx: AppContext = Depends(get_context)):
    oid = object_id_or_400(product_id, "product")
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if not changes:
        raise InvalidInput("No fields to update")
    if changes.get("category_id"):
        validate_category_id(ctx, changes["category_id"])
    for key in ("name", "description"):
        if changes.get(key):
            changes[key] = changes[key].strip()
    changes["updated_at"] = utcnow()

    result = ctx.db["product"].update_one({"_id": oid}, {"$set": changes})
    if result.matched_count == 0:
        raise NotFound("Product not found")
    updated = ctx.db["product"].find_one({"_id": oid})
    return {"success": True, "message": "Product updated successfully", "data": to_str_id(updated)}


@router.delete("/api/products/{product_id}")
def delete_product(product_id: str, ctx: AppContext = Depends(get_context)):
    result = ctx.db["product"].delete_one({"_id": object_id_or_400(product_id, "product")})
    if result.deleted_count == 0:
        raise NotFound("Product not found")
    logger.info("Product deleted: %s", product_id)
    return {"success": True, "message": "Product deleted successfully"}


# -----------------------------
# Categories
# -----------------------------

@router.get("/api/categories")
def list_categories(ctx: AppContext = Depends(get_context)):
    return list_response(get_documents(ctx.db, "category"))


@router.post("/api/categories", status_code=201)
def create_category(payload: CategoryCreate, ctx: AppContext = Depends(get_context)):
    name = payload.name.strip()
    if not name:
        raise InvalidInput("Name is required field")
    existing = ctx.db["category"].find_one({"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}})
    if existing:
        raise Conflict("Category with this name already exists")

    category = Category(name=name, description=(payload.description or "").strip())
    category_id = create_document(ctx.db, "category", category)
    created = ctx.db["category"].find_one({"_id": ObjectId(category_id)})
    logger.info("New category added: %s", name)
    return {"success": True, "message": "Category created successfully", "data": to_str_id(created)}


@router.get("/api/categories/{category_id}")
def get_category(category_id: str, ctx: AppContext = Depends(get_context)):
    category = ctx.db["category"].find_one({"_id": object_id_or_400(category_id, "category")})
    if not category:
        raise NotFound("Category not found")
    return {"success": True, "data": to_str_id(category)}


@router.delete("/api/categories/{category_id}")
def delete_category(category_id: str, ctx: AppContext = Depends(get_context)):
    oid = object_id_or_400(category_id, "category")
    in_use = ctx.db["product"].count_documents({"category_id": category_id})
    if in_use > 0:
        raise InvalidInput(f"Cannot delete category. {in_use} product(s) are using this category")

    result = ctx.db["category"].delete_one({"_id": oid})
    if result.deleted_count == 0:
        raise NotFound("Category not found")
    logger.info("Category deleted: %s", category_id)
    return {"success": True, "message": "Category deleted successfully"}


# -----------------------------
# Cart
# -----------------------------

@router.get("/api/cart")
def get_cart(user: dict = Depends(get_current_user), engine: CartEngine = Depends(get_cart_engine)):
    cart = engine.get_or_create_cart(user["user_id"])
    return {"success": True, "message": "Cart retrieved successfully", "cart": cart}


@router.post("/api/cart/add")
def add_to_cart(payload: CartItemRequest, user: dict = Depends(get_current_user),
                engine: CartEngine = Depends(get_cart_engine)):
    cart = engine.add_item(user["user_id"], payload.product_id, payload.quantity)
    return {"success": True, "message": "Item added to cart", "cart": cart}


@router.put("/api/cart/update")
def update_cart_item(payload: CartItemRequest, user: dict = Depends(get_current_user),
                     engine: CartEngine = Depends(get_cart_engine)):
    cart = engine.update_item(user["user_id"], payload.product_id, payload.quantity)
    return {"success": True, "message": "Cart updated", "cart": cart}


@router.delete("/api/cart/item/{product_id}")
def remove_cart_item(product_id: str, user: dict = Depends(get_current_user),
                     engine: CartEngine = Depends(get_cart_engine)):
    cart = engine.remove_item(user["user_id"], product_id)
    return {"success": True, "message": "Item removed from cart", "cart": cart}


@router.delete("/api/cart/clear")
def clear_cart(user: dict = Depends(get_current_user), engine: CartEngine = Depends(get_cart_engine)):
    cart = engine.clear_cart(user["user_id"])
    return {"success": True, "message": "Cart cleared", "cart": cart}


# -----------------------------
# OTP
# -----------------------------

@router.post("/api/send-otp")
def send_otp(payload: SendOtpRequest, ledger: OtpLedger = Depends(get_otp_ledger)):
    record = ledger.issue(payload.email)
    return {"success": True, "message": "OTP sent successfully", "email": record.email}


@router.post("/api/verify-otp")
def verify_otp(payload: VerifyOtpRequest, ledger: OtpLedger = Depends(get_otp_ledger)):
    record = ledger.verify(payload.email, payload.otp)
    return {
        "success": True,
        "message": "Email verified successfully",
        "email": record.email,
        "verifiedAt": record.verified_at,
    }


# -----------------------------
# Form data & newsletter
# -----------------------------

@router.post("/api/form-data", status_code=201)
def submit_form(payload: FormSubmission, ctx: AppContext = Depends(get_context)):
    data = payload.model_dump()
    data["email"] = normalize_email(data["email"])
    submission_id = create_document(ctx.db, "form_data", data)
    created = ctx.db["form_data"].find_one({"_id": ObjectId(submission_id)})
    logger.info("Form submission received from %s", data["email"])
    return {"success": True, "message": "Form submitted successfully", "data": to_str_id(created)}


@router.get("/api/form-data")
def list_form_data(ctx: AppContext = Depends(get_context)):
    return list_response(get_documents(ctx.db, "form_data", sort=[("created_at", DESCENDING)]))


@router.post("/api/newsletter", status_code=201)
def subscribe(payload: NewsletterRequest, ctx: AppContext = Depends(get_context)):
    email = normalize_email(payload.email)
    if ctx.db["newsletter"].find_one({"email": email}):
        raise Conflict("Email is already subscribed")
    try:
        subscriber_id = create_document(ctx.db, "newsletter", {"email": email, "subscribed_at": utcnow()})
    except DuplicateKeyError:
        raise Conflict("Email is already subscribed")
    created = ctx.db["newsletter"].find_one({"_id": ObjectId(subscriber_id)})
    return {"success": True, "message": "Subscribed successfully", "data": to_str_id(created)}


@router.get("/api/newsletter")
def list_subscribers(ctx: AppContext = Depends(get_context)):
    return list_response(get_documents(ctx.db, "newsletter", sort=[("subscribed_at", DESCENDING)]))


# -----------------------------
# Orders
# -----------------------------

@router.post("/api/orders", status_code=201)
def create_order(payload: OrderCreate, user: dict = Depends(get_current_user),
                 ctx: AppContext = Depends(get_context)):
    if ctx.db["order"].find_one({"order_id": payload.order_id}):
        raise Conflict("Order with this ID already exists")

    total_amount = round(sum(item.price * item.quantity for item in payload.items), 2)
    order = Order(
        order_id=payload.order_id,
        user_id=user["user_id"],
        items=payload.items,
        total_amount=total_amount,
        shipping=payload.shipping,
    )
    try:
        order_oid = create_document(ctx.db, "order", order)
    except DuplicateKeyError:
        raise Conflict("Order with this ID already exists")
    created = ctx.db["order"].find_one({"_id": ObjectId(order_oid)})
    logger.info("Order %s recorded for user %s", payload.order_id, user["user_id"])
    return {"success": True, "message": "Order created successfully", "data": to_str_id(created)}


@router.get("/api/orders")
def list_orders(user: dict = Depends(get_current_user), ctx: AppContext = Depends(get_context)):
    docs = get_documents(ctx.db, "order", {"user_id": user["user_id"]}, sort=[("created_at", DESCENDING)])
    return list_response(docs)


@router.get("/api/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(get_current_user), ctx: AppContext = Depends(get_context)):
    doc = ctx.db["order"].find_one({"order_id": order_id, "user_id": user["user_id"]})
    if not doc:
        raise NotFound("Order not found")
    return {"success": True, "data": to_str_id(doc)}


# -----------------------------
# App
# -----------------------------

def error_body(message: str, error: Optional[str] = None) -> dict:
    body = {"success": False, "message": message}
    if error:
        body["error"] = error
    return body


async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.error))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=error_body(str(exc.detail)))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content=error_body(message))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body("Internal server error", str(exc)))


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    context = context or build_context()
    configure_logging(context.settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_indexes(context.db, context.settings.otp_expiry_minutes)
        logger.info("Connected to database %s", context.settings.database_name)
        yield

    app = FastAPI(title="SM Furnishing Store API", lifespan=lifespan)
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
