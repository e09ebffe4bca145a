"""
Collection access for the shop.

Each store wraps one MongoDB collection and returns plain dicts with `id`
in place of `_id`. Multi-step operations are built from single-document
atomic updates; nothing here spans more than one document.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import serialize_doc, utcnow


class MongoStore:
    collection_name = ""

    def __init__(self, database: Database):
        self.collection = database[self.collection_name]

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.collection.find_one({"_id": ObjectId(doc_id)}))

    def find_by(self, field: str, value: Any) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.collection.find_one({field: value}))

    def list_all(self) -> List[Dict[str, Any]]:
        return [serialize_doc(d) for d in self.collection.find({}).sort("created_at", DESCENDING)]

    def list_by(self, field: str, value: Any) -> List[Dict[str, Any]]:
        cursor = self.collection.find({field: value}).sort("created_at", DESCENDING)
        return [serialize_doc(d) for d in cursor]

    def insert(self, data: Dict[str, Any]) -> Dict[str, Any]:
        now = utcnow()
        doc = {**data, "created_at": now, "updated_at": now}
        result = self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return serialize_doc(doc)

    def update(self, doc_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        doc = self.collection.find_one_and_update(
            {"_id": ObjectId(doc_id)},
            {"$set": {**fields, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(doc)

    def delete(self, doc_id: str) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.collection.find_one_and_delete({"_id": ObjectId(doc_id)}))


class ProductStore(MongoStore):
    collection_name = "product"

    def decrement_stock(self, product_id: str, quantity: int) -> bool:
        """Take `quantity` units only if that many are in stock."""
        result = self.collection.update_one(
            {"_id": ObjectId(product_id), "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        )
        return result.modified_count == 1

    def increment_stock(self, product_id: str, quantity: int) -> bool:
        result = self.collection.update_one(
            {"_id": ObjectId(product_id)},
            {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
        )
        return result.modified_count == 1


class CartStore(MongoStore):
    collection_name = "cart"

    def find_by_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.find_by("user", user_id)

    def increment_item(self, user_id: str, product_id: str, quantity: int, price: float) -> Optional[Dict[str, Any]]:
        """Bump an existing line item in place. Returns None when the cart has no such item."""
        doc = self.collection.find_one_and_update(
            {"user": user_id, "products.product_id": product_id},
            {
                "$inc": {"products.$.quantity": quantity},
                "$set": {"products.$.price_at_time_of_addition": price, "updated_at": utcnow()},
            },
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(doc)

    def push_item(self, user_id: str, product_id: str, quantity: int, price: float) -> Dict[str, Any]:
        now = utcnow()
        doc = self.collection.find_one_and_update(
            {"user": user_id},
            {
                "$push": {"products": {
                    "product_id": product_id,
                    "quantity": quantity,
                    "price_at_time_of_addition": price,
                }},
                "$set": {"updated_at": now},
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(doc)

    def replace_items(self, user_id: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        now = utcnow()
        doc = self.collection.find_one_and_update(
            {"user": user_id},
            {"$set": {"products": items, "updated_at": now}, "$setOnInsert": {"created_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(doc)

    def delete_by_user(self, user_id: str) -> bool:
        return self.collection.delete_one({"user": user_id}).deleted_count == 1


class OrderStore(MongoStore):
    collection_name = "order"


class UserStore(MongoStore):
    collection_name = "user"


class AdminStore(MongoStore):
    collection_name = "admin"


@dataclass
class Stores:
    products: ProductStore
    carts: CartStore
    orders: OrderStore
    users: UserStore
    admins: AdminStore

    @classmethod
    def from_db(cls, database: Database) -> "Stores":
        return cls(
            products=ProductStore(database),
            carts=CartStore(database),
            orders=OrderStore(database),
            users=UserStore(database),
            admins=AdminStore(database),
        )
