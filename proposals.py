import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from database import Database, parse_object_id, serialize_doc
from schemas import Proposal, ProposalItem

logger = logging.getLogger(__name__)


def create_proposal(db: Database, requester_id: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
    if not items:
        raise HTTPException(status_code=400, detail="A proposal needs at least one item")
    proposal = Proposal(
        requester_id=requester_id,
        items=[ProposalItem(**it) for it in items],
        status="requested",
    )
    proposal_id = db.create_document("proposal", proposal)
    logger.info("Proposal %s requested by %s (%d items)", proposal_id, requester_id, len(items))
    return get_proposal(db, proposal_id)


def list_proposals(db: Database, requester_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if requester_id:
        query["requester_id"] = requester_id
    return [serialize_doc(d) for d in db.get_documents("proposal", query)]


def get_proposal(db: Database, proposal_id: str) -> Dict[str, Any]:
    doc = db["proposal"].find_one({"_id": parse_object_id(proposal_id, "proposal")})
    if not doc:
        raise HTTPException(status_code=404, detail="Proposal not found")
    return serialize_doc(doc)
