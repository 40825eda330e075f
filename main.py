import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import PyMongoError

import accounts
import green_seal
import orders
import proposals
from auth import get_current_user, require_admin, require_roles
from database import Database, get_db, parse_object_id, serialize_doc
from geo import filter_by_radius
from reports import build_report
from schemas import Product as ProductSchema

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger("marketplace")

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

app = FastAPI(title="Farm Marketplace API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": f"Database error: {str(exc)}"})


@app.on_event("startup")
def connect_database():
    if getattr(app.state, "db", None) is None:
        app.state.db = Database.from_env()
    db = app.state.db
    if db is None:
        return
    try:
        db.ensure_indexes()
        if ADMIN_EMAIL and ADMIN_PASSWORD:
            accounts.ensure_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD)
    except PyMongoError as e:
        logger.warning("Database setup failed: %s", e)


@app.on_event("shutdown")
def close_database():
    db = getattr(app.state, "db", None)
    if db is not None:
        db.close()


# Routes
@app.get("/")
def read_root():
    return {"message": "Farm Marketplace API"}


@app.get("/test")
def test_database(request: Request):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    db = getattr(request.app.state, "db", None)
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = db.name
            response["collections"] = db.list_collection_names()
        else:
            response["database"] = "❌ Not Available"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth models
class RegisterInput(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Literal["consumer", "producer", "restaurant"]
    national_id: str = Field(..., description="CPF or CNPJ, punctuated")
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    location: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    farm_name: Optional[str] = None
    farm_description: Optional[str] = None
    establishment_name: Optional[str] = None
    establishment_description: Optional[str] = None
    categories_of_interest: Optional[List[str]] = None
    delivery_radius_km: Optional[float] = Field(None, ge=0)


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


# Auth
@app.post("/auth/register", response_model=TokenResponse, status_code=201)
def register(payload: RegisterInput, db: Database = Depends(get_db)):
    profile = payload.model_dump(exclude={"name", "email", "password", "role", "national_id"}, exclude_none=True)
    return accounts.register_account(
        db,
        role=payload.role,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        national_id=payload.national_id,
        profile=profile,
    )


@app.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginInput, db: Database = Depends(get_db)):
    return accounts.login(db, payload.email, payload.password)


@app.get("/auth/me")
def me(current_user: dict = Depends(get_current_user)):
    return current_user


# Accounts
class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    location: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    farm_name: Optional[str] = None
    farm_description: Optional[str] = None
    farm_photo: Optional[str] = None
    establishment_name: Optional[str] = None
    establishment_description: Optional[str] = None
    establishment_photo: Optional[str] = None
    categories_of_interest: Optional[List[str]] = None
    delivery_radius_km: Optional[float] = Field(None, ge=0)


class AccountStatusInput(BaseModel):
    status: Literal["active", "blocked"]


@app.get("/consumers")
def list_consumers(db: Database = Depends(get_db), admin: dict = Depends(require_admin)):
    return accounts.list_accounts(db, "consumer")


@app.get("/producers")
def list_producers(db: Database = Depends(get_db), admin: dict = Depends(require_admin)):
    return accounts.list_accounts(db, "producer")


@app.get("/producers/{producer_id}")
def get_producer(producer_id: str, db: Database = Depends(get_db)):
    return accounts.get_account(db, "producer", producer_id)


@app.put("/producers/{producer_id}")
def update_producer(producer_id: str, data: ProfileUpdate, db: Database = Depends(get_db), current_user: dict = Depends(get_current_user)):
    return accounts.update_profile(db, "producer", producer_id, current_user, data.model_dump(exclude_unset=True))


@app.get("/restaurants")
def list_restaurants(db: Database = Depends(get_db), admin: dict = Depends(require_admin)):
    return accounts.list_accounts(db, "restaurant")


@app.get("/restaurants/{restaurant_id}")
def get_restaurant(restaurant_id: str, db: Database = Depends(get_db)):
    return accounts.get_account(db, "restaurant", restaurant_id)


@app.put("/restaurants/{restaurant_id}")
def update_restaurant(restaurant_id: str, data: ProfileUpdate, db: Database = Depends(get_db), current_user: dict = Depends(get_current_user)):
    return accounts.update_profile(db, "restaurant", restaurant_id, current_user, data.model_dump(exclude_unset=True))


@app.patch("/admin/users/{user_id}/status")
def set_user_status(user_id: str, data: AccountStatusInput, db: Database = Depends(get_db), admin: dict = Depends(require_admin)):
    return accounts.set_account_status(db, user_id, data.status)


# Products
class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)
    unit: str = "unit"
    image_url: Optional[str] = None
    detailed_description: Optional[str] = None
    origin: Optional[str] = None
    certifications: List[str] = []
    extra_images: List[str] = []
    specifications: Dict[str, str] = {}


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    unit: Optional[str] = None
    image_url: Optional[str] = None
    detailed_description: Optional[str] = None
    origin: Optional[str] = None
    certifications: Optional[List[str]] = None
    extra_images: Optional[List[str]] = None
    specifications: Optional[Dict[str, str]] = None


def _owned_product(db: Database, product_id: str, current_user: dict) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product")})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    if current_user.get("role") != "admin" and product.get("producer_id") != current_user.get("id"):
        raise HTTPException(status_code=403, detail="You can only manage your own products")
    return product


@app.post("/products", status_code=201)
def create_product(data: ProductIn, db: Database = Depends(get_db), current_user: dict = Depends(require_roles("producer"))):
    product = ProductSchema(producer_id=current_user["id"], **data.model_dump())
    product_id = db.create_document("product", product)
    created = db["product"].find_one({"_id": parse_object_id(product_id, "product")})
    return serialize_doc(created)


@app.get("/products")
def list_products(producer_id: Optional[str] = None, category: Optional[str] = None, q: Optional[str] = None, db: Database = Depends(get_db)):
    query: Dict[str, Any] = {}
    if producer_id:
        query["producer_id"] = producer_id
    if category:
        query["category"] = category
    if q:
        query["$or"] = [
            {"name": {"$regex": q, "$options": "i"}},
            {"description": {"$regex": q, "$options": "i"}},
            {"category": {"$regex": q, "$options": "i"}},
        ]
    return [serialize_doc(d) for d in db.get_documents("product", query)]


@app.get("/products/nearby")
def nearby_products(lat: float = Query(..., ge=-90, le=90), lng: float = Query(..., ge=-180, le=180), radius: float = Query(50, gt=0), db: Database = Depends(get_db)):
    producers = {}
    for p in db["producer"].find({"latitude": {"$ne": None}, "longitude": {"$ne": None}}):
        producers[str(p["_id"])] = {
            "latitude": p.get("latitude"),
            "longitude": p.get("longitude"),
            "name": p.get("farm_name") or p.get("name"),
        }
    products = [serialize_doc(d) for d in db["product"].find({})]
    found = filter_by_radius(products, producers, lat, lng, radius)
    return {"products": found, "total": len(found), "radius_km": radius}


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product")})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(product)


@app.patch("/products/{product_id}")
def update_product(product_id: str, data: ProductUpdate, db: Database = Depends(get_db), current_user: dict = Depends(get_current_user)):
    product = _owned_product(db, product_id, current_user)
    update_dict = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if not update_dict:
        raise HTTPException(status_code=400, detail="No fields to update")
    update_dict["updated_at"] = datetime.now(timezone.utc)
    db["product"].update_one({"_id": product["_id"]}, {"$set": update_dict})
    return serialize_doc(db["product"].find_one({"_id": product["_id"]}))


@app.delete("/products/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db), current_user: dict = Depends(get_current_user)):
    product = _owned_product(db, product_id, current_user)
    db["product"].delete_one({"_id": product["_id"]})
    return {"ok": True}


# Orders
class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    name: Optional[str] = None
    unit_price: Optional[float] = Field(None, ge=0)


class OrderCreate(BaseModel):
    producer_id: str
    items: List[OrderItemIn] = Field(..., min_length=1)
    total: float = Field(..., ge=0)


class StatusUpdate(BaseModel):
    status: str


class CancelInput(BaseModel):
    cancelled_by: Literal["producer", "consumer"]
    reason: str = Field(..., min_length=1)


class ReviewInput(BaseModel):
    score: int = Field(..., ge=1, le=5, strict=True)
    comment: Optional[str] = None


@app.post("/orders", status_code=201)
def create_order(payload: OrderCreate, db: Database = Depends(get_db), current_user: dict = Depends(require_roles("consumer", "restaurant"))):
    return orders.create_order(
        db,
        consumer_id=current_user["id"],
        producer_id=payload.producer_id,
        items=[i.model_dump() for i in payload.items],
        total=payload.total,
    )


@app.get("/orders")
def list_orders(consumer_id: Optional[str] = None, producer_id: Optional[str] = None, db: Database = Depends(get_db), current_user: dict = Depends(get_current_user)):
    role = current_user.get("role")
    if role == "producer":
        producer_id = current_user["id"]
    elif role != "admin":
        consumer_id = current_user["id"]
    return orders.list_orders(db, consumer_id=consumer_id, producer_id=producer_id)


@app.get("/orders/{order_id}")
def get_order(order_id: str, db: Database = Depends(get_db), current_user: dict = Depends(get_current_user)):
    order = orders.load_order(db, order_id)
    if not orders.is_participant(order, current_user):
        raise HTTPException(status_code=403, detail="Not your order")
    return serialize_doc(order)


@app.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, data: StatusUpdate, db: Database = Depends(get_db), current_user: dict = Depends(get_current_user)):
    order = orders.load_order(db, order_id)
    if current_user.get("role") != "admin" and order.get("producer_id") != current_user.get("id"):
        raise HTTPException(status_code=403, detail="Only the order's producer can update its status")
    return orders.advance_status(db, order_id, data.status)


@app.post("/orders/{order_id}/cancel")
def cancel_order(order_id: str, data: CancelInput, db: Database = Depends(get_db), current_user: dict = Depends(get_current_user)):
    order = orders.load_order(db, order_id)
    party_id = order.get("producer_id") if data.cancelled_by == "producer" else order.get("consumer_id")
    if current_user.get("role") != "admin" and current_user.get("id") != party_id:
        raise HTTPException(status_code=403, detail=f"Only the order's {data.cancelled_by} can cancel as {data.cancelled_by}")
    return orders.cancel_order(db, order_id, data.cancelled_by, data.reason)


@app.post("/orders/{order_id}/review", status_code=201)
def review_order(order_id: str, data: ReviewInput, db: Database = Depends(get_db), current_user: dict = Depends(get_current_user)):
    order = orders.load_order(db, order_id)
    if order.get("consumer_id") != current_user.get("id"):
        raise HTTPException(status_code=403, detail="Only the buyer can review this order")
    return orders.review_order(db, order_id, data.score, data.comment)


# Green seal
class SealRequestInput(BaseModel):
    practices_description: str = Field(..., min_length=50, max_length=1000)
    documents: List[str] = []
    property_photos: List[str] = []


class SealRejectInput(BaseModel):
    reason: str = Field(..., min_length=1)


@app.post("/green-seal", status_code=201)
def request_green_seal(data: SealRequestInput, db: Database = Depends(get_db), current_user: dict = Depends(require_roles("producer"))):
    return green_seal.request_seal(db, current_user["id"], data.practices_description, data.documents, data.property_photos)


@app.get("/green-seal")
def list_green_seal_requests(status: Optional[str] = None, db: Database = Depends(get_db), current_user: dict = Depends(get_current_user)):
    return green_seal.list_requests(db, current_user, status)


@app.patch("/green-seal/{request_id}/approve")
def approve_green_seal(request_id: str, db: Database = Depends(get_db), admin: dict = Depends(require_admin)):
    return green_seal.approve_request(db, request_id, admin["id"])


@app.patch("/green-seal/{request_id}/reject")
def reject_green_seal(request_id: str, data: SealRejectInput, db: Database = Depends(get_db), admin: dict = Depends(require_admin)):
    return green_seal.reject_request(db, request_id, admin["id"], data.reason)


# Proposals
class ProposalItemIn(BaseModel):
    product_id: str
    name: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class ProposalCreate(BaseModel):
    items: List[ProposalItemIn] = Field(..., min_length=1)


@app.post("/proposals", status_code=201)
def create_proposal(data: ProposalCreate, db: Database = Depends(get_db), current_user: dict = Depends(require_roles("restaurant", "consumer"))):
    return proposals.create_proposal(db, current_user["id"], [i.model_dump() for i in data.items])


@app.get("/proposals")
def list_proposals(requester_id: Optional[str] = None, db: Database = Depends(get_db), current_user: dict = Depends(get_current_user)):
    if current_user.get("role") in ("restaurant", "consumer"):
        requester_id = current_user["id"]
    return proposals.list_proposals(db, requester_id)


@app.get("/proposals/{proposal_id}")
def get_proposal(proposal_id: str, db: Database = Depends(get_db), current_user: dict = Depends(get_current_user)):
    proposal = proposals.get_proposal(db, proposal_id)
    if current_user.get("role") in ("restaurant", "consumer") and proposal.get("requester_id") != current_user["id"]:
        raise HTTPException(status_code=403, detail="Not your proposal")
    return proposal


# Admin reports
@app.get("/admin/reports")
def admin_reports(kind: Optional[str] = None, db: Database = Depends(get_db), admin: dict = Depends(require_admin)):
    return build_report(db, kind)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
