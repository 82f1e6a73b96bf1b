import logging
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

import config
import database
from database import get_documents, serialize_doc
from errors import MarketplaceError
from routes import admin, coupons, cron, customer, payment, seller

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("marketplace")

app = FastAPI(title="Marketplace Orders API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(customer.router)
app.include_router(coupons.router)
app.include_router(seller.router)
app.include_router(admin.router)
app.include_router(payment.router)
app.include_router(cron.router)


# ---------- Error envelope ----------

@app.exception_handler(MarketplaceError)
def marketplace_error(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(HTTPException)
def http_error(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": str(exc.detail)})


@app.exception_handler(RequestValidationError)
def request_validation_error(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else "Invalid request"
    return JSONResponse(status_code=422, content={"success": False, "message": message})


@app.exception_handler(Exception)
def unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Server error"})


# ---------- Health ----------

@app.get("/")
def root():
    return {"status": "ok", "service": "marketplace-api"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        db = database.get_db()
        response["database_name"] = db.name
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ---------- Catalog ----------

@app.get("/api/products")
def list_products(category: Optional[str] = None, limit: Optional[int] = 50):
    query = {"is_active": True}
    if category:
        query["category"] = category
    return {"success": True, "products": [serialize_doc(p) for p in get_documents("product", query, limit)]}


@app.get("/api/steal-deals")
def list_steal_deals():
    now = database.now()
    query = {"is_active": True, "starts_at": {"$lte": now}, "ends_at": {"$gte": now}}
    return {"success": True, "deals": [serialize_doc(d) for d in get_documents("steal_deal", query)]}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
