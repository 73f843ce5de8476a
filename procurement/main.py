from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from procurement.config import settings
from procurement.database import db
from procurement.errors import ProcurementError
from procurement.api import purchase_requests, approvals, budget_exceptions, buyers, dashboard
from procurement.tools.notification_tool import notification_tool

# Setup Logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    db.connect()
    yield
    await notification_tool.drain()
    db.close()

app = FastAPI(
    title="Procurement Portal API",
    description="Purchase request lifecycle: approvals, buyer assignment, budget exceptions, SLA",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS Config
origins = [
    "http://localhost:3000",
    "http://localhost:8000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(ProcurementError)
async def procurement_error_handler(request: Request, exc: ProcurementError):
    logger.info(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

# Router Registration
app.include_router(purchase_requests.router)
app.include_router(approvals.router)
app.include_router(budget_exceptions.router)
app.include_router(buyers.router)
app.include_router(dashboard.router)

# Health Check
@app.get("/health")
async def health_check():
    return {"status": "ok", "environment": settings.ENVIRONMENT}

if __name__ == "__main__":
    uvicorn.run("procurement.main:app", host="0.0.0.0", port=8000, reload=True)
