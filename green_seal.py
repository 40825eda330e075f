"""
Green seal certification requests.

A producer files a request describing its sustainable practices; an admin then
approves or rejects it once. Approval also marks the producer as certified, and
both writes share one transaction.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

from database import Database, parse_object_id, serialize_doc
from schemas import GreenSealRequest, SEAL_STATUSES

logger = logging.getLogger(__name__)


class AlreadyDecided(Exception):
    pass


def _load_request(db: Database, request_id: str) -> Dict[str, Any]:
    doc = db["green_seal_request"].find_one({"_id": parse_object_id(request_id, "request")})
    if not doc:
        raise HTTPException(status_code=404, detail="Green seal request not found")
    if doc.get("status") != "pending":
        raise HTTPException(status_code=409, detail="This request has already been reviewed")
    return doc


def request_seal(db: Database, producer_id: str, practices_description: str, documents: Optional[List[str]] = None, property_photos: Optional[List[str]] = None) -> Dict[str, Any]:
    if db["green_seal_request"].find_one({"producer_id": producer_id, "status": "pending"}):
        raise HTTPException(status_code=409, detail="You already have a request under review")
    request = GreenSealRequest(
        producer_id=producer_id,
        practices_description=practices_description,
        documents=documents or [],
        property_photos=property_photos or [],
    )
    try:
        request_id = db.create_document("green_seal_request", request)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="You already have a request under review")
    logger.info("Producer %s requested the green seal (%s)", producer_id, request_id)
    doc = db["green_seal_request"].find_one({"_id": parse_object_id(request_id, "request")})
    return {"message": "Request submitted", "request": serialize_doc(doc)}


def list_requests(db: Database, current_user: Dict[str, Any], status: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    role = current_user.get("role")
    if role == "admin":
        if status:
            if status not in SEAL_STATUSES:
                raise HTTPException(status_code=400, detail="Invalid status filter")
            query["status"] = status
    elif role == "producer":
        query["producer_id"] = current_user["id"]
    else:
        raise HTTPException(status_code=403, detail="Not allowed")
    return [serialize_doc(d) for d in db.get_documents("green_seal_request", query)]


def approve_request(db: Database, request_id: str, admin_id: str) -> Dict[str, Any]:
    doc = _load_request(db, request_id)
    now = datetime.now(timezone.utc)
    try:
        with db.transaction() as session:
            res = db["green_seal_request"].update_one(
                {"_id": doc["_id"], "status": "pending"},
                {"$set": {"status": "approved", "reviewed_by": admin_id, "reviewed_at": now, "updated_at": now}},
                session=session,
            )
            if res.modified_count == 0:
                raise AlreadyDecided()
            db["producer"].update_one(
                {"_id": parse_object_id(doc["producer_id"], "producer")},
                {"$set": {"green_seal": True, "green_seal_approved_at": now, "updated_at": now}},
                session=session,
            )
    except AlreadyDecided:
        raise HTTPException(status_code=409, detail="This request has already been reviewed")
    logger.info("Green seal request %s approved by %s", request_id, admin_id)
    updated = db["green_seal_request"].find_one({"_id": doc["_id"]})
    return {"message": "Green seal approved", "request": serialize_doc(updated)}


def reject_request(db: Database, request_id: str, admin_id: str, reason: str) -> Dict[str, Any]:
    if not reason or not reason.strip():
        raise HTTPException(status_code=400, detail="A rejection reason is required")
    doc = _load_request(db, request_id)
    now = datetime.now(timezone.utc)
    res = db["green_seal_request"].update_one(
        {"_id": doc["_id"], "status": "pending"},
        {"$set": {
            "status": "rejected",
            "reviewed_by": admin_id,
            "reviewed_at": now,
            "rejection_reason": reason,
            "updated_at": now,
        }},
    )
    if res.modified_count == 0:
        raise HTTPException(status_code=409, detail="This request has already been reviewed")
    logger.info("Green seal request %s rejected by %s", request_id, admin_id)
    updated = db["green_seal_request"].find_one({"_id": doc["_id"]})
    return {"message": "Request rejected", "request": serialize_doc(updated)}
