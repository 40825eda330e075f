"""
Account registration and login.

Every account, whatever its role, owns one row in the ``identity`` collection.
The unique indexes on that collection are what keeps an e-mail or a CPF/CNPJ
from being registered twice under different roles.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

from auth import hash_password, public_user, token_for, verify_password
from database import Database, parse_object_id
from schemas import Consumer, Identity, Producer, Restaurant, ROLE_COLLECTIONS
from validators import national_id_error

logger = logging.getLogger(__name__)

ACCOUNT_MODELS = {
    "consumer": Consumer,
    "producer": Producer,
    "restaurant": Restaurant,
}

# Fields a profile update can never touch
PROTECTED_FIELDS = {
    "_id", "id", "email", "national_id", "password_hash", "role", "status",
    "green_seal", "green_seal_approved_at", "created_at",
}

ADMIN_NATIONAL_ID = "000.000.000-00"


def register_account(db: Database, role: str, name: str, email: str, password: str, national_id: str, profile: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    if role not in ACCOUNT_MODELS:
        raise HTTPException(status_code=400, detail="Role must be consumer, producer or restaurant")
    error = national_id_error(role, national_id)
    if error:
        raise HTTPException(status_code=400, detail=error)

    email = email.lower()
    if db["identity"].find_one({"email": email}):
        raise HTTPException(status_code=409, detail="Email already registered")
    if db["identity"].find_one({"national_id": national_id}):
        raise HTTPException(status_code=409, detail="National id already registered")

    model = ACCOUNT_MODELS[role]
    extra = {k: v for k, v in (profile or {}).items() if k in model.model_fields and k not in PROTECTED_FIELDS and v is not None}
    account = model(
        name=name,
        email=email,
        national_id=national_id,
        password_hash=hash_password(password),
        **extra,
    )

    try:
        with db.transaction() as session:
            user_id = db.create_document(ROLE_COLLECTIONS[role], account, session=session)
            identity = Identity(email=email, national_id=national_id, role=role, user_id=user_id)
            db.create_document("identity", identity, session=session)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Email or national id already registered")

    logger.info("Registered %s account %s", role, user_id)
    user = db[ROLE_COLLECTIONS[role]].find_one({"_id": parse_object_id(user_id, "user")})
    return {"access_token": token_for(user_id, role), "token_type": "bearer", "user": public_user(user)}


def login(db: Database, email: str, password: str) -> Dict[str, Any]:
    identity = db["identity"].find_one({"email": email.lower()})
    user = None
    if identity and identity.get("role") in ROLE_COLLECTIONS and identity.get("user_id"):
        user = db[ROLE_COLLECTIONS[identity["role"]]].find_one({"_id": parse_object_id(identity["user_id"], "user")})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Invalid email or password")
    if user.get("status") == "blocked":
        raise HTTPException(status_code=403, detail="Account is blocked")
    user_id = str(user["_id"])
    return {"access_token": token_for(user_id, user["role"]), "token_type": "bearer", "user": public_user(user)}


def ensure_admin(db: Database, email: str, password: str) -> str:
    """Create the admin account if no account uses ``email`` yet."""
    email = email.lower()
    existing = db["identity"].find_one({"email": email})
    if existing:
        return existing.get("user_id")
    admin = Consumer(
        name="Administrator",
        email=email,
        national_id=ADMIN_NATIONAL_ID,
        password_hash=hash_password(password),
        role="admin",
    )
    with db.transaction() as session:
        user_id = db.create_document("consumer", admin, session=session)
        db.create_document("identity", Identity(email=email, national_id=ADMIN_NATIONAL_ID, role="admin", user_id=user_id), session=session)
    logger.info("Created admin account %s", email)
    return user_id


def list_accounts(db: Database, role: str):
    docs = db.get_documents(ROLE_COLLECTIONS[role], {"role": role})
    return [public_user(d) for d in docs]


def get_account(db: Database, role: str, user_id: str) -> Dict[str, Any]:
    doc = db[ROLE_COLLECTIONS[role]].find_one({"_id": parse_object_id(user_id, role), "role": role})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{role.capitalize()} not found")
    return public_user(doc)


def update_profile(db: Database, role: str, user_id: str, current_user: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    obj_id = parse_object_id(user_id, role)
    if current_user.get("id") != user_id and current_user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="You can only edit your own profile")
    model = ACCOUNT_MODELS[role]
    update_dict = {k: v for k, v in changes.items() if k in model.model_fields and k not in PROTECTED_FIELDS}
    if not update_dict:
        raise HTTPException(status_code=400, detail="No fields to update")
    update_dict["updated_at"] = datetime.now(timezone.utc)
    res = db[ROLE_COLLECTIONS[role]].update_one({"_id": obj_id, "role": role}, {"$set": update_dict})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail=f"{role.capitalize()} not found")
    return get_account(db, role, user_id)


def set_account_status(db: Database, user_id: str, status: str) -> Dict[str, Any]:
    if status not in ("active", "blocked"):
        raise HTTPException(status_code=400, detail="Invalid status")
    obj_id = parse_object_id(user_id, "user")
    for collection in ("consumer", "producer", "restaurant"):
        res = db[collection].update_one(
            {"_id": obj_id},
            {"$set": {"status": status, "updated_at": datetime.now(timezone.utc)}},
        )
        if res.matched_count:
            logger.info("Account %s is now %s", user_id, status)
            return {"ok": True, "id": user_id, "status": status}
    raise HTTPException(status_code=404, detail="User not found")
