"""Read-only aggregations over orders for the admin and seller dashboards."""

from collections import OrderedDict
from datetime import datetime
from typing import Optional

from database import as_utc, get_db

REVENUE_EXCLUDED = ("cancelled", "returned")


def _match(seller_id: Optional[str], start: Optional[datetime], end: Optional[datetime]) -> dict:
    match = {}
    if seller_id:
        match["items.seller_id"] = seller_id
    if start or end:
        match["created_at"] = {}
        if start:
            match["created_at"]["$gte"] = start
        if end:
            match["created_at"]["$lte"] = end
    return match


def status_breakdown(match: dict, seller_id: Optional[str] = None) -> dict:
    """Order count and revenue per status. A seller's revenue is their own line totals."""
    if seller_id:
        pipeline = [
            {"$match": match},
            {"$unwind": "$items"},
            {"$match": {"items.seller_id": seller_id}},
            {"$group": {"_id": {"order": "$_id", "status": "$status"}, "revenue": {"$sum": "$items.line_total"}}},
            {"$group": {"_id": "$_id.status", "count": {"$sum": 1}, "revenue": {"$sum": "$revenue"}}},
        ]
    else:
        pipeline = [
            {"$match": match},
            {"$group": {"_id": "$status", "count": {"$sum": 1}, "revenue": {"$sum": "$pricing.total"}}},
        ]
    rows = get_db()["order"].aggregate(pipeline)
    return {row["_id"]: {"count": row["count"], "revenue": row["revenue"]} for row in rows}


def top_products(match: dict, limit: int = 5, seller_id: Optional[str] = None) -> list:
    pipeline = [
        {"$match": match},
        {"$unwind": "$items"},
    ]
    if seller_id:
        pipeline.append({"$match": {"items.seller_id": seller_id}})
    pipeline += [
        {"$match": {"status": {"$nin": list(REVENUE_EXCLUDED)}}},
        {"$group": {
            "_id": "$items.product_id",
            "name": {"$first": "$items.name"},
            "units": {"$sum": "$items.quantity"},
            "revenue": {"$sum": "$items.line_total"},
        }},
        {"$sort": {"revenue": -1}},
        {"$limit": limit},
    ]
    return [
        {"product_id": row["_id"], "name": row["name"], "units": row["units"], "revenue": row["revenue"]}
        for row in get_db()["order"].aggregate(pipeline)
    ]


def daily_revenue(match: dict, seller_id: Optional[str] = None) -> list:
    buckets = OrderedDict()
    fields = {"created_at": 1, "pricing.total": 1, "status": 1, "items": 1}
    cursor = get_db()["order"].find(match, fields).sort("created_at", 1)
    for doc in cursor:
        if doc.get("status") in REVENUE_EXCLUDED or not doc.get("created_at"):
            continue
        day = as_utc(doc["created_at"]).date().isoformat()
        bucket = buckets.setdefault(day, {"date": day, "orders": 0, "revenue": 0})
        bucket["orders"] += 1
        if seller_id:
            bucket["revenue"] += sum(i["line_total"] for i in doc["items"] if i.get("seller_id") == seller_id)
        else:
            bucket["revenue"] += doc["pricing"]["total"]
    return list(buckets.values())


def return_stats(match: dict) -> dict:
    stats = {"total": 0}
    query = dict(match, return_request={"$ne": None})
    for doc in get_db()["order"].find(query, {"return_request.status": 1}):
        status = doc["return_request"]["status"]
        stats[status] = stats.get(status, 0) + 1
        stats["total"] += 1
    return stats


def order_analytics(seller_id: Optional[str] = None, start: Optional[datetime] = None,
                    end: Optional[datetime] = None) -> dict:
    match = _match(seller_id, start, end)
    breakdown = status_breakdown(match, seller_id)

    total_orders = sum(row["count"] for row in breakdown.values())
    revenue_orders = sum(row["count"] for s, row in breakdown.items() if s not in REVENUE_EXCLUDED)
    revenue = sum(row["revenue"] for s, row in breakdown.items() if s not in REVENUE_EXCLUDED)
    return {
        "summary": {
            "total_orders": total_orders,
            "total_revenue": revenue,
            "average_order_value": round(revenue / revenue_orders, 2) if revenue_orders else 0,
            "completed_orders": breakdown.get("delivered", {}).get("count", 0),
            "cancelled_orders": breakdown.get("cancelled", {}).get("count", 0),
            "returned_orders": breakdown.get("returned", {}).get("count", 0),
        },
        "status_breakdown": breakdown,
        "daily_revenue": daily_revenue(match, seller_id),
        "top_products": top_products(match, seller_id=seller_id),
        "returns": return_stats(match),
    }
