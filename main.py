import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Settings, load_settings
from database import Database, connect
from errors import NotFound, StoreError
from orders import OrderService, require_admin
from schemas import (
    PlaceOrderRequest,
    Product,
    ProductUpdate,
    Requester,
    StatusUpdate,
    invalid_input_from,
)

logger = logging.getLogger(__name__)


# Seed products
DEMO_PRODUCTS = [
    {
        "name": "Wireless Bluetooth Headphones",
        "description": "Premium wireless headphones with noise cancellation and 30-hour battery life.",
        "price": 79.99,
        "category": "Electronics",
        "stock": 50,
        "images": ["https://images.unsplash.com/photo-1505740420928-5e560c06d30e?w=500"],
    },
    {
        "name": "Smart Watch Pro",
        "description": "Smartwatch with heart rate monitor, GPS tracking and water resistance.",
        "price": 199.99,
        "category": "Electronics",
        "stock": 30,
        "images": ["https://images.unsplash.com/photo-1523275335684-37898b6baf30?w=500"],
    },
    {
        "name": "Leather Laptop Bag",
        "description": "Durable leather laptop bag with padded compartments. Fits up to 15.6 inches.",
        "price": 89.99,
        "category": "Accessories",
        "stock": 25,
        "images": ["https://images.unsplash.com/photo-1553062407-98eeb64c6a62?w=500"],
    },
    {
        "name": "Wireless Mouse",
        "description": "Ergonomic wireless mouse with precision tracking and long battery life.",
        "price": 29.99,
        "category": "Electronics",
        "stock": 100,
        "images": ["https://images.unsplash.com/photo-1527814050087-3793815479db?w=500"],
    },
]


def seed_products_if_empty(database: Database):
    if database.products.count() > 0:
        return
    for p in DEMO_PRODUCTS:
        database.products.create(Product(**p))
    logger.info("Seeded %d demo products", len(DEMO_PRODUCTS))


# Dependencies


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_service(request: Request) -> OrderService:
    return request.app.state.orders


def get_requester(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Requester:
    """Identity forwarded by the upstream authentication layer."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return Requester(id=x_user_id, role=(x_user_role or "user").lower())


router = APIRouter()


@router.get("/")
def read_root():
    return {"message": "Storefront backend running"}


@router.get("/api/health")
def health(database: Database = Depends(get_database)):
    response = {
        "status": "ok",
        "backend": database.backend,
        "database": "Not Connected",
        "collections": [],
    }
    try:
        info = database.ping()
        response["database"] = "Connected"
        response["collections"] = info["collections"]
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        response["database"] = f"Error: {str(e)[:80]}"
    return response


# Catalog endpoints


@router.get("/api/products")
def list_products(category: Optional[str] = None, database: Database = Depends(get_database)):
    if category == "all":
        category = None
    return database.products.list(category)


@router.get("/api/products/categories", response_model=List[str])
def list_categories(database: Database = Depends(get_database)):
    return database.products.categories()


@router.get("/api/products/{product_id}")
def get_product(product_id: str, database: Database = Depends(get_database)):
    product = database.products.get(product_id)
    if product is None:
        raise NotFound("Product", product_id)
    return product


@router.post("/api/products", status_code=201)
def create_product(
    payload: Product,
    requester: Requester = Depends(get_requester),
    database: Database = Depends(get_database),
):
    require_admin(requester, "add products")
    product = database.products.create(payload)
    logger.info("Created product %s (%s)", product["id"], product["name"])
    return product


@router.put("/api/products/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdate,
    requester: Requester = Depends(get_requester),
    database: Database = Depends(get_database),
):
    require_admin(requester, "update products")
    patch = payload.model_dump(exclude_none=True)
    if not patch:
        product = database.products.get(product_id)
        if product is None:
            raise NotFound("Product", product_id)
        return product
    return database.products.update(product_id, patch)


@router.delete("/api/products/{product_id}")
def delete_product(
    product_id: str,
    requester: Requester = Depends(get_requester),
    database: Database = Depends(get_database),
):
    require_admin(requester, "delete products")
    database.products.delete(product_id)
    logger.info("Deleted product %s", product_id)
    return {"message": "Product deleted successfully"}


# Order endpoints


@router.post("/api/orders", status_code=201)
def place_order(
    payload: PlaceOrderRequest,
    requester: Requester = Depends(get_requester),
    service: OrderService = Depends(get_service),
):
    return service.place_order(requester, payload)


@router.get("/api/orders")
def list_all_orders(
    requester: Requester = Depends(get_requester),
    service: OrderService = Depends(get_service),
):
    return service.list_all_orders(requester)


@router.get("/api/orders/user/{user_id}")
def list_user_orders(
    user_id: str,
    requester: Requester = Depends(get_requester),
    service: OrderService = Depends(get_service),
):
    return service.list_orders_for_user(requester, user_id)


@router.put("/api/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: StatusUpdate,
    requester: Requester = Depends(get_requester),
    service: OrderService = Depends(get_service),
):
    return service.update_status(requester, order_id, payload)


@router.get("/api/orders/{order_id}")
def get_order(
    order_id: str,
    requester: Requester = Depends(get_requester),
    service: OrderService = Depends(get_service),
):
    return service.get_order(requester, order_id)


# Admin endpoints


@router.get("/api/admin/dashboard")
def dashboard(
    requester: Requester = Depends(get_requester),
    service: OrderService = Depends(get_service),
):
    return service.dashboard(requester)


async def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "error": type(exc).__name__},
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    return await store_error_handler(request, invalid_input_from(exc.errors()))


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or load_settings()
    database = database or connect(settings)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.open()
        if settings.seed_products:
            seed_products_if_empty(database)
        try:
            yield
        finally:
            database.close()

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.orders = OrderService(database)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
