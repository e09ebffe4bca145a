import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictInt
from starlette.exceptions import HTTPException as StarletteHTTPException

from accounts import AccountService
from cart import CartService
from database import db, ensure_indexes, validate_object_id
from errors import NotFoundError, ShopError, ValidationError
from orders import OrderBuilder, OrderService
from payments import initiate_payment
from schemas import Admin as AdminSchema, Product as ProductSchema, ShippingInfo, User as UserSchema
from store import Stores

# Config
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ENFORCE_ORDER_TRANSITIONS = os.getenv("ENFORCE_ORDER_TRANSITIONS", "true").lower() not in ("0", "false", "no")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(format="%(message)s", level=level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
    )


configure_logging()
logger = structlog.get_logger(__name__)

# App init
app = FastAPI(title="Leather Walk Shop API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handling
@app.exception_handler(ShopError)
def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid request"))
    return JSONResponse(status_code=400, content={"message": message})


@app.exception_handler(Exception)
def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", path=request.url.path, method=request.method, exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# Dependencies
def get_stores() -> Stores:
    if db is None:
        raise HTTPException(status_code=503, detail="Database is not configured")
    return Stores.from_db(db)


def get_cart_service(stores: Stores = Depends(get_stores)) -> CartService:
    return CartService(stores.carts, stores.products)


def get_order_builder(stores: Stores = Depends(get_stores)) -> OrderBuilder:
    return OrderBuilder(stores)


def get_order_service(stores: Stores = Depends(get_stores)) -> OrderService:
    return OrderService(stores, enforce_transitions=ENFORCE_ORDER_TRANSITIONS)


def get_user_service(stores: Stores = Depends(get_stores)) -> AccountService:
    return AccountService(stores.users, UserSchema, "User", ("username", "email", "phone"), role="user")


def get_admin_service(stores: Stores = Depends(get_stores)) -> AccountService:
    return AccountService(stores.admins, AdminSchema, "Admin", ("username", "email"), role="admin")


# Request models
class AddToCartRequest(BaseModel):
    product_id: Optional[str] = None
    quantity: Optional[StrictInt] = None


class CartItemRequest(BaseModel):
    product_id: Optional[str] = None
    quantity: Optional[StrictInt] = None
    price_at_time_of_addition: Optional[float] = Field(None, allow_inf_nan=False)


class SetCartRequest(BaseModel):
    products: Optional[List[CartItemRequest]] = None


class OrderItemRequest(BaseModel):
    product_id: Optional[str] = None
    quantity: Optional[StrictInt] = None
    price: Optional[float] = Field(None, allow_inf_nan=False)
    size: Optional[str] = None
    color: Optional[str] = None


class OrderCreateRequest(BaseModel):
    user_id: Optional[str] = None
    products: List[OrderItemRequest] = []
    shipping_info: ShippingInfo
    payment_method: str = "cod"
    mpesa_number: Optional[str] = None
    shipping_cost: float = Field(0, ge=0, allow_inf_nan=False)
    # Client-side arithmetic, compared against the server totals and logged only
    subtotal_amount: Optional[float] = Field(None, allow_inf_nan=False)
    total_amount: Optional[float] = Field(None, allow_inf_nan=False)


class OrderStatusRequest(BaseModel):
    order_status: Optional[str] = None
    tracking_number: Optional[str] = None
    delivered_at: Optional[datetime] = None


class PaymentStatusRequest(BaseModel):
    payment_status: Optional[str] = None


class ProductUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    stock: Optional[int] = Field(None, ge=0)
    size: Optional[str] = None
    color: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None


class UserCreateRequest(BaseModel):
    username: str = Field(..., min_length=1)
    fullname: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    county: str = Field(..., min_length=1)
    role: str = Field("user", pattern="^(user|admin)$")
    password: str = Field(..., min_length=1)


class UserUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: Optional[str] = Field(None, min_length=1)
    fullname: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, min_length=1)
    county: Optional[str] = Field(None, min_length=1)
    role: Optional[str] = Field(None, pattern="^(user|admin)$")
    password: Optional[str] = Field(None, min_length=1)


class AdminCreateRequest(BaseModel):
    username: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)


class AdminUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=1)


class LoginRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: str


def _updates(req: BaseModel) -> Dict[str, Any]:
    return {k: v for k, v in req.model_dump(exclude_unset=True).items() if v is not None}


# Routes
@app.get("/")
def root():
    return {"message": "Welcome to the Leather Walk online shop API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "running",
        "database": "not configured",
        "database_name": None,
        "collections": [],
    }
    if db is None:
        return response
    response["database_name"] = db.name
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "connected"
    except Exception as e:
        logger.warning("database_check_failed", error=str(e))
        response["database"] = f"error: {str(e)[:50]}"
    return response


# Products
@app.post("/api/products", status_code=201)
def create_product(req: ProductSchema, stores: Stores = Depends(get_stores)):
    return stores.products.insert(req.model_dump())


@app.get("/api/products")
def list_products(stores: Stores = Depends(get_stores)):
    return stores.products.list_all()


@app.get("/api/products/{product_id}")
def get_product(product_id: str, stores: Stores = Depends(get_stores)):
    validate_object_id(product_id, "Product ID")
    product = stores.products.get(product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


@app.patch("/api/products/{product_id}")
def update_product(product_id: str, req: ProductUpdateRequest, stores: Stores = Depends(get_stores)):
    validate_object_id(product_id, "Product ID")
    updates = _updates(req)
    if not updates:
        raise ValidationError("No updates provided")
    product = stores.products.update(product_id, updates)
    if not product:
        raise NotFoundError("Product not found")
    return product


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, stores: Stores = Depends(get_stores)):
    validate_object_id(product_id, "Product ID")
    product = stores.products.delete(product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


# Carts
@app.get("/api/carts/{user_id}")
def get_cart(user_id: str, service: CartService = Depends(get_cart_service)):
    return service.get_cart(user_id).cart


@app.post("/api/carts/{user_id}/add")
def add_to_cart(user_id: str, req: AddToCartRequest, service: CartService = Depends(get_cart_service)):
    return service.add_item(user_id, req.product_id, req.quantity)


@app.put("/api/carts/{user_id}")
def set_cart_items(user_id: str, req: SetCartRequest, service: CartService = Depends(get_cart_service)):
    items = None if req.products is None else [item.model_dump() for item in req.products]
    return service.set_items(user_id, items)


@app.delete("/api/carts/{user_id}")
def clear_cart(user_id: str, service: CartService = Depends(get_cart_service)):
    service.clear_cart(user_id)
    return {"message": "Cart deleted successfully."}


# Orders
@app.post("/api/orders", status_code=201)
def create_order(req: OrderCreateRequest, background_tasks: BackgroundTasks,
                 builder: OrderBuilder = Depends(get_order_builder)):
    order = builder.create(
        user_id=req.user_id,
        items=[item.model_dump() for item in req.products],
        shipping_info=req.shipping_info,
        payment_method=req.payment_method,
        mpesa_number=req.mpesa_number,
        shipping_cost=req.shipping_cost,
        client_subtotal=req.subtotal_amount,
        client_total=req.total_amount,
    )
    background_tasks.add_task(initiate_payment, order)
    return order


@app.get("/api/orders")
def list_orders(service: OrderService = Depends(get_order_service)):
    return service.list_orders()


@app.get("/api/orders/myorders/{user_id}")
def list_my_orders(user_id: str, service: OrderService = Depends(get_order_service)):
    return service.list_user_orders(user_id)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, service: OrderService = Depends(get_order_service)):
    return service.get_order(order_id)


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, req: OrderStatusRequest, service: OrderService = Depends(get_order_service)):
    kwargs: Dict[str, Any] = {"order_status": req.order_status, "delivered_at": req.delivered_at}
    if "tracking_number" in req.model_fields_set:
        kwargs["tracking_number"] = req.tracking_number
    return service.update_status(order_id, **kwargs)


@app.put("/api/orders/{order_id}/payment-status")
def update_payment_status(order_id: str, req: PaymentStatusRequest, service: OrderService = Depends(get_order_service)):
    return service.update_payment_status(order_id, req.payment_status)


# Users
@app.post("/api/users", status_code=201)
def create_user(req: UserCreateRequest, service: AccountService = Depends(get_user_service)):
    return service.create(req.model_dump())


@app.get("/api/users")
def list_users(service: AccountService = Depends(get_user_service)):
    return service.list()


@app.get("/api/users/email/{email}")
def get_user_by_email(email: str, service: AccountService = Depends(get_user_service)):
    return service.get_by_email(email)


@app.get("/api/users/{user_id}")
def get_user(user_id: str, service: AccountService = Depends(get_user_service)):
    return service.get(user_id)


@app.put("/api/users/{user_id}")
def update_user(user_id: str, req: UserUpdateRequest, service: AccountService = Depends(get_user_service)):
    return service.update(user_id, _updates(req))


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, service: AccountService = Depends(get_user_service)):
    service.delete(user_id)
    return {"message": "User deleted successfully"}


# Admins
@app.post("/api/admins", status_code=201)
def create_admin(req: AdminCreateRequest, service: AccountService = Depends(get_admin_service)):
    return service.create(req.model_dump())


@app.get("/api/admins")
def list_admins(service: AccountService = Depends(get_admin_service)):
    return service.list()


@app.post("/api/admins/login")
def admin_login(req: LoginRequest, service: AccountService = Depends(get_admin_service)):
    if not req.username and not req.email:
        raise ValidationError("Username or email is required.")
    return service.login(req.password, username=req.username, email=req.email)


@app.get("/api/admins/email/{email}")
def get_admin_by_email(email: str, service: AccountService = Depends(get_admin_service)):
    return service.get_by_email(email)


@app.get("/api/admins/{admin_id}")
def get_admin(admin_id: str, service: AccountService = Depends(get_admin_service)):
    return service.get(admin_id)


@app.put("/api/admins/{admin_id}")
def update_admin(admin_id: str, req: AdminUpdateRequest, service: AccountService = Depends(get_admin_service)):
    return service.update(admin_id, _updates(req))


@app.delete("/api/admins/{admin_id}")
def delete_admin(admin_id: str, service: AccountService = Depends(get_admin_service)):
    service.delete(admin_id)
    return {"message": "Admin deleted successfully"}


@app.on_event("startup")
def create_indexes():
    if db is None:
        logger.warning("database_not_configured")
        return
    ensure_indexes(db)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
