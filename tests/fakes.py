"""In-memory fake stores for testing.

These mirror the method surface of the Mongo stores in store.py, including
the conditional updates, but keep everything in a dict.
"""
import copy
import itertools
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.errors import PyMongoError

from database import utcnow
from store import Stores


class FakeStore:

    def __init__(self) -> None:
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._seq = itertools.count()
        self._order: Dict[str, int] = {}

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._docs.get(doc_id)
        return copy.deepcopy(doc) if doc else None

    def find_by(self, field: str, value: Any) -> Optional[Dict[str, Any]]:
        for doc in self._docs.values():
            if doc.get(field) == value:
                return copy.deepcopy(doc)
        return None

    def _newest_first(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ordered = sorted(docs, key=lambda d: (d["created_at"], self._order[d["id"]]), reverse=True)
        return [copy.deepcopy(d) for d in ordered]

    def list_all(self) -> List[Dict[str, Any]]:
        return self._newest_first(list(self._docs.values()))

    def list_by(self, field: str, value: Any) -> List[Dict[str, Any]]:
        return self._newest_first([d for d in self._docs.values() if d.get(field) == value])

    def insert(self, data: Dict[str, Any]) -> Dict[str, Any]:
        doc_id = str(ObjectId())
        now = utcnow()
        doc = {**copy.deepcopy(data), "id": doc_id, "created_at": now, "updated_at": now}
        self._docs[doc_id] = doc
        self._order[doc_id] = next(self._seq)
        return copy.deepcopy(doc)

    def update(self, doc_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        doc = self._docs.get(doc_id)
        if doc is None:
            return None
        doc.update(copy.deepcopy(fields))
        doc["updated_at"] = utcnow()
        return copy.deepcopy(doc)

    def delete(self, doc_id: str) -> Optional[Dict[str, Any]]:
        return self._docs.pop(doc_id, None)


class FakeProductStore(FakeStore):

    def decrement_stock(self, product_id: str, quantity: int) -> bool:
        doc = self._docs.get(product_id)
        if doc is None or doc["stock"] < quantity:
            return False
        doc["stock"] -= quantity
        return True

    def increment_stock(self, product_id: str, quantity: int) -> bool:
        doc = self._docs.get(product_id)
        if doc is None:
            return False
        doc["stock"] += quantity
        return True


class FakeCartStore(FakeStore):

    def __init__(self) -> None:
        super().__init__()
        self.fail_deletes = False

    def _doc_for(self, user_id: str) -> Optional[Dict[str, Any]]:
        for doc in self._docs.values():
            if doc["user"] == user_id:
                return doc
        return None

    def find_by_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.find_by("user", user_id)

    def increment_item(self, user_id, product_id, quantity, price):
        doc = self._doc_for(user_id)
        if doc is None:
            return None
        for item in doc["products"]:
            if item["product_id"] == product_id:
                item["quantity"] += quantity
                item["price_at_time_of_addition"] = price
                return copy.deepcopy(doc)
        return None

    def push_item(self, user_id, product_id, quantity, price):
        doc = self._doc_for(user_id)
        if doc is None:
            doc = self._docs[self.insert({"user": user_id, "products": []})["id"]]
        doc["products"].append({
            "product_id": product_id,
            "quantity": quantity,
            "price_at_time_of_addition": price,
        })
        return copy.deepcopy(doc)

    def replace_items(self, user_id, items):
        doc = self._doc_for(user_id)
        if doc is None:
            doc = self._docs[self.insert({"user": user_id, "products": []})["id"]]
        doc["products"] = copy.deepcopy(items)
        return copy.deepcopy(doc)

    def delete_by_user(self, user_id: str) -> bool:
        if self.fail_deletes:
            raise PyMongoError("connection reset")
        doc = self._doc_for(user_id)
        if doc is None:
            return False
        del self._docs[doc["id"]]
        return True


def make_stores() -> Stores:
    return Stores(
        products=FakeProductStore(),
        carts=FakeCartStore(),
        orders=FakeStore(),
        users=FakeStore(),
        admins=FakeStore(),
    )
