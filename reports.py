from typing import Any, Dict, Optional

from fastapi import HTTPException

from database import Database


def _total_revenue(db: Database) -> float:
    pipeline = [{"$group": {"_id": None, "total": {"$sum": "$total"}}}]
    row = next(iter(db["order"].aggregate(pipeline)), None) or {"total": 0}
    return round(float(row.get("total", 0)), 2)


def orders_report(db: Database) -> Dict[str, Any]:
    pipeline = [
        {"$group": {"_id": "$status", "count": {"$sum": 1}, "revenue": {"$sum": "$total"}}},
        {"$sort": {"_id": 1}},
    ]
    by_status = [
        {"status": row["_id"], "count": int(row.get("count", 0)), "revenue": round(float(row.get("revenue", 0)), 2)}
        for row in db["order"].aggregate(pipeline)
    ]
    return {
        "orders_by_status": by_status,
        "total_orders": db["order"].count_documents({}),
        "total_revenue": _total_revenue(db),
    }


def green_seal_report(db: Database) -> Dict[str, Any]:
    total = db["producer"].count_documents({})
    certified = list(db["producer"].find({"green_seal": True}))
    percentage = round(len(certified) / total * 100, 1) if total else 0.0
    return {
        "total_producers": total,
        "certified_producers": len(certified),
        "percentage": percentage,
        "producers": [
            {
                "id": str(p["_id"]),
                "name": p.get("name"),
                "farm_name": p.get("farm_name"),
                "approved_at": p.get("green_seal_approved_at"),
            }
            for p in certified
        ],
    }


def users_report(db: Database) -> Dict[str, Any]:
    consumers = db["consumer"].count_documents({"role": "consumer"})
    producers = db["producer"].count_documents({})
    restaurants = db["restaurant"].count_documents({})
    return {
        "consumers": consumers,
        "producers": producers,
        "restaurants": restaurants,
        "total": consumers + producers + restaurants,
    }


def revenue_report(db: Database) -> Dict[str, Any]:
    pipeline = [
        {"$group": {
            "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}},
            "revenue": {"$sum": "$total"},
            "orders": {"$sum": 1},
        }},
        {"$sort": {"_id.year": -1, "_id.month": -1}},
        {"$limit": 12},
    ]
    months = [
        {
            "year": row["_id"]["year"],
            "month": row["_id"]["month"],
            "revenue": round(float(row.get("revenue", 0)), 2),
            "orders": int(row.get("orders", 0)),
        }
        for row in db["order"].aggregate(pipeline)
    ]
    return {"revenue_by_month": months}


def summary_report(db: Database) -> Dict[str, Any]:
    return {
        "total_users": users_report(db)["total"],
        "total_products": db["product"].count_documents({}),
        "total_orders": db["order"].count_documents({}),
        "total_revenue": _total_revenue(db),
    }


REPORTS = {
    "orders": orders_report,
    "green-seal": green_seal_report,
    "users": users_report,
    "revenue": revenue_report,
}


def build_report(db: Database, kind: Optional[str] = None) -> Dict[str, Any]:
    if kind is None:
        return summary_report(db)
    if kind not in REPORTS:
        raise HTTPException(status_code=400, detail=f"Unknown report '{kind}'")
    return REPORTS[kind](db)
