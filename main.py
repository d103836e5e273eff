import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pythonjsonlogger import jsonlogger

from auth import authorize, ensure_owner_or_admin
from database import Database, get_db
from errors import AuthorizationError, ShopError
from orders import OrderStore
from schemas import (CartItemIn, CartItemRemove, CategoryIn, OrderIn, ProductIn,
                     ProductPatch, UserCreate, UserLogin, UserUpdate)
from stores import CartStore, CategoryStore, ProductStore, UserStore

# JSON logging setup
logHandler = logging.StreamHandler(sys.stdout)
formatter = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s')
logHandler.setFormatter(formatter)

logger = logging.getLogger()
logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
logger.addHandler(logHandler)

any_user = authorize("user", "admin")
admin_only = authorize("admin")


# Store dependencies
def get_user_store(db: Database = Depends(get_db)) -> UserStore:
    return UserStore(db)


def get_category_store(db: Database = Depends(get_db)) -> CategoryStore:
    return CategoryStore(db)


def get_product_store(db: Database = Depends(get_db)) -> ProductStore:
    return ProductStore(db)


def get_cart_store(db: Database = Depends(get_db)) -> CartStore:
    return CartStore(db)


def get_order_store(db: Database = Depends(get_db)) -> OrderStore:
    return OrderStore(db)


# Health
health = APIRouter()


@health.get("/")
def read_root():
    return {"message": "Shop API running"}


@health.get("/test")
def test_database(db: Database = Depends(get_db)):
    try:
        return {"backend": "ok", "db": "ok", "collections": db.collection_names()[:10]}
    except Exception as e:
        return {"backend": "ok", "db": f"error: {str(e)[:80]}"}


# Auth
auth_router = APIRouter(prefix="/api/auth", tags=["Auth"])


@auth_router.post("/register", status_code=201)
def register(user: UserCreate, users: UserStore = Depends(get_user_store)):
    return {"message": "User registered successfully", "user": users.register(user)}


@auth_router.post("/login")
def login(creds: UserLogin, users: UserStore = Depends(get_user_store)):
    return {"message": "Login successful", "token": users.login(creds)}


@auth_router.get("/users")
def list_users(identity: Dict[str, Any] = Depends(admin_only),
               users: UserStore = Depends(get_user_store)) -> List[Dict[str, Any]]:
    return users.list_users()


@auth_router.get("/users/{user_id}")
def get_user(user_id: str, identity: Dict[str, Any] = Depends(any_user),
             users: UserStore = Depends(get_user_store)):
    ensure_owner_or_admin(identity, user_id)
    return users.get_user(user_id)


@auth_router.put("/users/{user_id}")
def update_user(user_id: str, payload: UserUpdate, identity: Dict[str, Any] = Depends(any_user),
                users: UserStore = Depends(get_user_store)):
    ensure_owner_or_admin(identity, user_id)
    if payload.role is not None and identity["role"] != "admin":
        raise AuthorizationError("Forbidden: Only admins can change roles")
    return {"message": "User updated successfully", "user": users.update_user(user_id, payload)}


@auth_router.delete("/users/{user_id}")
def delete_user(user_id: str, identity: Dict[str, Any] = Depends(admin_only),
                users: UserStore = Depends(get_user_store)):
    return {"message": "User deleted successfully", "user": users.delete_user(user_id)}


# Categories
category_router = APIRouter(prefix="/api/category", tags=["Category"])


@category_router.get("")
def list_categories(categories: CategoryStore = Depends(get_category_store)):
    return categories.list_categories()


@category_router.get("/{category_id}")
def get_category(category_id: str, categories: CategoryStore = Depends(get_category_store)):
    return categories.get_category(category_id)


@category_router.post("", status_code=201)
def create_category(category: CategoryIn, identity: Dict[str, Any] = Depends(admin_only),
                    categories: CategoryStore = Depends(get_category_store)):
    return {"message": "Category Created Successfully", "category": categories.create_category(category)}


@category_router.put("/{category_id}")
def update_category(category_id: str, category: CategoryIn, identity: Dict[str, Any] = Depends(admin_only),
                    categories: CategoryStore = Depends(get_category_store)):
    return {"message": "Category Updated Successfully",
            "category": categories.update_category(category_id, category)}


# Products
product_router = APIRouter(prefix="/api/product", tags=["Product"])


@product_router.get("")
def list_products(identity: Dict[str, Any] = Depends(any_user),
                  products: ProductStore = Depends(get_product_store)):
    return products.list_products()


@product_router.get("/{product_id}")
def get_product(product_id: str, identity: Dict[str, Any] = Depends(any_user),
                products: ProductStore = Depends(get_product_store)):
    return products.get_product(product_id)


@product_router.post("", status_code=201)
def create_product(product: ProductIn, identity: Dict[str, Any] = Depends(admin_only),
                   products: ProductStore = Depends(get_product_store)):
    return {"message": "Product Created Successfully", "product": products.create_product(product)}


@product_router.put("/{product_id}")
def replace_product(product_id: str, product: ProductIn, identity: Dict[str, Any] = Depends(admin_only),
                    products: ProductStore = Depends(get_product_store)):
    return {"message": "Product Updated Successfully", "product": products.replace_product(product_id, product)}


@product_router.patch("/{product_id}")
def patch_product(product_id: str, product: ProductPatch, identity: Dict[str, Any] = Depends(admin_only),
                  products: ProductStore = Depends(get_product_store)):
    return {"message": "Product Updated Successfully", "product": products.patch_product(product_id, product)}


# Cart
cart_router = APIRouter(prefix="/api/cart", tags=["Cart"])


def cart_owner(identity: Dict[str, Any], user_id: Optional[str]) -> str:
    ensure_owner_or_admin(identity, user_id)
    return user_id or identity["id"]


@cart_router.get("")
def get_cart(userId: Optional[str] = None, identity: Dict[str, Any] = Depends(any_user),
             carts: CartStore = Depends(get_cart_store)):
    return carts.get_cart(cart_owner(identity, userId))


@cart_router.post("")
def add_item_to_cart(item: CartItemIn, identity: Dict[str, Any] = Depends(any_user),
                     carts: CartStore = Depends(get_cart_store)):
    cart = carts.add_item(cart_owner(identity, item.user_id), item.product_id, item.quantity)
    return {"message": "Item added to cart successfully", "cart": cart}


@cart_router.put("")
def update_item_quantity(item: CartItemIn, identity: Dict[str, Any] = Depends(any_user),
                         carts: CartStore = Depends(get_cart_store)):
    cart = carts.update_quantity(cart_owner(identity, item.user_id), item.product_id, item.quantity)
    return {"message": "Item quantity updated successfully", "cart": cart}


@cart_router.delete("")
def remove_item_from_cart(item: CartItemRemove, identity: Dict[str, Any] = Depends(any_user),
                          carts: CartStore = Depends(get_cart_store)):
    cart = carts.remove_item(cart_owner(identity, item.user_id), item.product_id)
    return {"message": "Item removed from cart successfully", "cart": cart}


# Orders
order_router = APIRouter(prefix="/api/order", tags=["Order"])


@order_router.get("")
def list_orders(identity: Dict[str, Any] = Depends(any_user),
                orders: OrderStore = Depends(get_order_store)):
    return orders.get_all_orders()


@order_router.post("", status_code=201)
def create_order(order: OrderIn, identity: Dict[str, Any] = Depends(any_user),
                 orders: OrderStore = Depends(get_order_store)):
    created = orders.create_order(order)
    return {"message": "Order and Order Details Created Successfully", **created}


@order_router.get("/{order_id}")
def get_order(order_id: str, identity: Dict[str, Any] = Depends(any_user),
              orders: OrderStore = Depends(get_order_store)):
    return orders.get_order_by_id(order_id)


@order_router.put("/{order_id}")
def update_order(order_id: str, order: OrderIn, identity: Dict[str, Any] = Depends(admin_only),
                 orders: OrderStore = Depends(get_order_store)):
    updated = orders.update_order_with_detail(order_id, order)
    return {"message": "Order and Order Details Updated Successfully", **updated}


@order_router.delete("/{order_id}")
def delete_order(order_id: str, identity: Dict[str, Any] = Depends(admin_only),
                 orders: OrderStore = Depends(get_order_store)):
    orders.delete_order(order_id)
    return {"message": "Order and Order Details Deleted Successfully"}


# Error handlers
async def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"][1:]) or "body"
        problems.append(f"{field}: {err['msg']}")
    return JSONResponse(status_code=400, content={"error": "; ".join(problems)})


async def unhandled_error_handler(request: Request, exc: Exception):
    logging.getLogger(__name__).exception("Unhandled error", extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


def create_app(database: Optional[Database] = None) -> FastAPI:
    """
    Build the API.

    Without a `database` the app connects using DATABASE_URL when it starts
    and closes the connection on shutdown. A handle passed in is used as is
    and left open.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = database or Database.connect()
        app.state.db = db
        db.ensure_indexes()
        try:
            yield
        finally:
            if database is None:
                db.close()

    app = FastAPI(title="Shop API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ShopError, shop_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    for router in (health, auth_router, category_router, product_router, cart_router, order_router):
        app.include_router(router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
