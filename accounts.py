"""
User and admin accounts.

Passwords are stored as bcrypt hashes and never returned. Uniqueness is
checked up front for a friendly message; the unique indexes created at
startup catch anything that slips past the checks.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Type

import structlog
from jose import jwt
from passlib.context import CryptContext
import pydantic
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from database import validate_object_id
from errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from store import MongoStore

logger = structlog.get_logger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def create_token(account: Dict[str, Any], role: str) -> str:
    payload = {
        "sub": account["id"],
        "email": account.get("email"),
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRE_DAYS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    return {k: v for k, v in doc.items() if k != "password_hash"}


class AccountService:
    def __init__(self, store: MongoStore, schema: Type[BaseModel], label: str, unique_fields: Sequence[str], role: str):
        self.store = store
        self.schema = schema
        self.label = label
        self.unique_fields = tuple(unique_fields)
        self.role = role

    def _ensure_unique(self, data: Dict[str, Any], exclude_id: Optional[str] = None) -> None:
        for field in self.unique_fields:
            if field not in data:
                continue
            existing = self.store.find_by(field, data[field])
            if existing and existing["id"] != exclude_id:
                raise ConflictError(f"{self.label} with this {field} already exists.", field=field)

    def _hash_password(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data)
        password = data.pop("password", None)
        if password is not None:
            if not password:
                raise ValidationError("Password must not be empty.")
            data["password_hash"] = pwd_context.hash(password)
        return data

    def _load(self, account_id: str) -> Dict[str, Any]:
        validate_object_id(account_id, f"{self.label} ID")
        account = self.store.get(account_id)
        if not account:
            raise NotFoundError(f"{self.label} not found")
        return account

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_unique(data)
        try:
            document = self.schema.model_validate(self._hash_password(data)).model_dump()
            account = self.store.insert(document)
        except DuplicateKeyError as exc:
            key_value = (exc.details or {}).get("keyValue") or {}
            field = next(iter(key_value), "value")
            raise ConflictError(f"{field} already exists.", field=field)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid {self.label.lower()} data: {exc.errors()[0]['msg']}")
        logger.info("account_created", kind=self.role, account_id=account["id"])
        return public(account)

    def list(self) -> List[Dict[str, Any]]:
        return [public(a) for a in self.store.list_all()]

    def get(self, account_id: str) -> Dict[str, Any]:
        return public(self._load(account_id))

    def get_by_email(self, email: str) -> Dict[str, Any]:
        account = self.store.find_by("email", email)
        if not account:
            raise NotFoundError(f"{self.label} not found")
        return public(account)

    def update(self, account_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self._load(account_id)
        if not data:
            raise ValidationError("No updates provided")
        self._ensure_unique(data, exclude_id=account_id)
        try:
            account = self.store.update(account_id, self._hash_password(data))
        except DuplicateKeyError:
            raise ConflictError(f"Failed to update {self.label.lower()}: duplicate value.")
        return public(account)

    def delete(self, account_id: str) -> None:
        validate_object_id(account_id, f"{self.label} ID")
        if not self.store.delete(account_id):
            raise NotFoundError(f"{self.label} not found")
        logger.info("account_deleted", kind=self.role, account_id=account_id)

    def login(self, password: str, username: Optional[str] = None, email: Optional[str] = None) -> Dict[str, Any]:
        """Verify credentials and return the account with a signed token."""
        account = None
        if username:
            account = self.store.find_by("username", username)
        if account is None and email:
            account = self.store.find_by("email", email)
        password_hash = account.get("password_hash") if account else None
        if not password_hash or not pwd_context.verify(password, password_hash):
            logger.info("login_failed", kind=self.role, username=username, email=email)
            raise AuthenticationError("Invalid credentials")
        return {"message": "Login successful", "token": create_token(account, self.role), self.role: public(account)}
