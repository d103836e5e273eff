"""
Single-document stores for users, the catalog and carts.

None of these operations open a transaction: each call reads or writes
one document. Cart updates read the whole cart, change it in memory and
write the item list back, so two concurrent writers to the same cart can
lose an update.
"""
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import create_access_token, hash_password, public_user, verify_password
from database import Database, guard_storage, serialize_doc, to_decimal128, to_object_id, utcnow
from errors import AuthenticationError, NotFoundError, ValidationError
from schemas import (CategoryIn, ProductIn, ProductPatch, UserCreate, UserLogin,
                     UserUpdate)

logger = logging.getLogger(__name__)


class UserStore:
    collection = "user"

    def __init__(self, db: Database):
        self.db = db

    @guard_storage
    def register(self, data: UserCreate) -> Dict[str, Any]:
        if self.db[self.collection].find_one({"email": data.email}):
            raise ValidationError("Email already registered")
        doc = data.model_dump(by_alias=True)
        doc["password"] = hash_password(data.password)
        doc["role"] = "user"
        doc["active"] = True
        try:
            saved = self.db.create_document(self.collection, doc)
        except DuplicateKeyError:
            raise ValidationError("Email already registered")
        return public_user(saved)

    @guard_storage
    def login(self, data: UserLogin) -> str:
        user = self.db[self.collection].find_one({"email": data.email})
        if not user:
            raise NotFoundError("User not found")
        if not verify_password(data.password, user.get("password", "")):
            logger.warning("Failed login", extra={"user_id": str(user["_id"])})
            raise AuthenticationError("Invalid password")
        return create_access_token(str(user["_id"]), user.get("role", "user"))

    @guard_storage
    def list_users(self) -> List[Dict[str, Any]]:
        return [public_user(u) for u in self.db.get_documents(self.collection)]

    @guard_storage
    def get_user(self, user_id: str) -> Dict[str, Any]:
        user = self.db[self.collection].find_one({"_id": to_object_id(user_id, "User")})
        if not user:
            raise NotFoundError("User not found")
        return public_user(user)

    @guard_storage
    def update_user(self, user_id: str, data: UserUpdate) -> Dict[str, Any]:
        oid = to_object_id(user_id, "User")
        fields = data.model_dump(by_alias=True, exclude_none=True)
        if "password" in fields:
            fields["password"] = hash_password(fields["password"])
        if "email" in fields and self.db[self.collection].find_one({"email": fields["email"], "_id": {"$ne": oid}}):
            raise ValidationError("Email already registered")
        fields["updatedAt"] = utcnow()
        try:
            user = self.db[self.collection].find_one_and_update(
                {"_id": oid}, {"$set": fields}, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            raise ValidationError("Email already registered")
        if not user:
            raise NotFoundError("User not found")
        return public_user(user)

    @guard_storage
    def delete_user(self, user_id: str) -> Dict[str, Any]:
        user = self.db[self.collection].find_one_and_delete({"_id": to_object_id(user_id, "User")})
        if not user:
            raise NotFoundError("User not found")
        return public_user(user)


class CategoryStore:
    collection = "category"

    def __init__(self, db: Database):
        self.db = db

    @guard_storage
    def list_categories(self) -> List[Dict[str, Any]]:
        return serialize_doc(self.db.get_documents(self.collection))

    @guard_storage
    def get_category(self, category_id: str) -> Dict[str, Any]:
        category = self.db[self.collection].find_one({"_id": to_object_id(category_id, "Category")})
        if not category:
            raise NotFoundError("Category not found")
        return serialize_doc(category)

    @guard_storage
    def create_category(self, data: CategoryIn) -> Dict[str, Any]:
        return serialize_doc(self.db.create_document(self.collection, data))

    @guard_storage
    def update_category(self, category_id: str, data: CategoryIn) -> Dict[str, Any]:
        fields = data.model_dump(by_alias=True)
        fields["updatedAt"] = utcnow()
        category = self.db[self.collection].find_one_and_update(
            {"_id": to_object_id(category_id, "Category")},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        if not category:
            raise NotFoundError("Category not found")
        return serialize_doc(category)


def _product_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    if fields.get("price") is not None:
        fields["price"] = to_decimal128(fields["price"])
    return fields


class ProductStore:
    collection = "product"

    def __init__(self, db: Database):
        self.db = db

    @guard_storage
    def list_products(self) -> List[Dict[str, Any]]:
        return serialize_doc(self.db.get_documents(self.collection))

    @guard_storage
    def get_product(self, product_id: str) -> Dict[str, Any]:
        product = self.db[self.collection].find_one({"_id": to_object_id(product_id, "Product")})
        if not product:
            raise NotFoundError("Product not found")
        return serialize_doc(product)

    @guard_storage
    def create_product(self, data: ProductIn) -> Dict[str, Any]:
        doc = _product_fields(data.model_dump(by_alias=True))
        return serialize_doc(self.db.create_document(self.collection, doc))

    @guard_storage
    def replace_product(self, product_id: str, data: ProductIn) -> Dict[str, Any]:
        return self._update(product_id, _product_fields(data.model_dump(by_alias=True)))

    @guard_storage
    def patch_product(self, product_id: str, data: ProductPatch) -> Dict[str, Any]:
        fields = data.model_dump(by_alias=True, exclude_none=True)
        if not fields:
            raise ValidationError("At least one field is required to update")
        return self._update(product_id, _product_fields(fields))

    def _update(self, product_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        fields["updatedAt"] = utcnow()
        product = self.db[self.collection].find_one_and_update(
            {"_id": to_object_id(product_id, "Product")},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        if not product:
            raise NotFoundError("Product not found")
        return serialize_doc(product)


class CartStore:
    collection = "cart"

    def __init__(self, db: Database):
        self.db = db

    def _find(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.db[self.collection].find_one({"userId": user_id})

    def _save_items(self, cart: Dict[str, Any]) -> Dict[str, Any]:
        cart["updatedAt"] = utcnow()
        self.db[self.collection].update_one(
            {"_id": cart["_id"]}, {"$set": {"items": cart["items"], "updatedAt": cart["updatedAt"]}}
        )
        return serialize_doc(cart)

    @guard_storage
    def get_cart(self, user_id: str) -> Dict[str, Any]:
        cart = self._find(user_id)
        if not cart:
            raise NotFoundError("Cart not found")
        out = serialize_doc(cart)
        product_ids = [ObjectId(i["productId"]) for i in cart["items"] if ObjectId.is_valid(i["productId"])]
        products = {
            str(p["_id"]): serialize_doc(p)
            for p in self.db.get_documents("product", {"_id": {"$in": product_ids}})
        }
        for item in out["items"]:
            if item["productId"] in products:
                item["product"] = products[item["productId"]]
        return out

    @guard_storage
    def add_item(self, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
        cart = self._find(user_id)
        if not cart:
            doc = {"userId": user_id, "items": [{"productId": product_id, "quantity": quantity}]}
            return serialize_doc(self.db.create_document(self.collection, doc))
        for item in cart["items"]:
            if item["productId"] == product_id:
                item["quantity"] += quantity
                break
        else:
            cart["items"].append({"productId": product_id, "quantity": quantity})
        return self._save_items(cart)

    @guard_storage
    def remove_item(self, user_id: str, product_id: str) -> Dict[str, Any]:
        cart = self._find(user_id)
        if not cart:
            raise NotFoundError("Cart not found")
        items = [i for i in cart["items"] if i["productId"] != product_id]
        if len(items) == len(cart["items"]):
            return serialize_doc(cart)
        cart["items"] = items
        return self._save_items(cart)

    @guard_storage
    def update_quantity(self, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
        cart = self._find(user_id)
        if not cart:
            raise NotFoundError("Cart not found")
        for item in cart["items"]:
            if item["productId"] == product_id:
                item["quantity"] = quantity
                return self._save_items(cart)
        raise NotFoundError("Item not found in cart")
