"""
api.py - FastAPI HTTP layer over the ledger.

Endpoints:
  - GET  /health
  - POST /statements/import           (multipart upload, field "statement")
  - POST /pricing/quote
  - POST /orders/{order_id}/commissions
  - POST /commissions/recalculate
  - POST /orders/{order_id}/status
  - GET  /orders/{order_id}/financials

No business logic lives here. No authentication.
"""

from __future__ import annotations

import os
from decimal import Decimal
from typing import Any, Optional

import uvicorn
from fastapi import Body, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from commission_lifecycle import apply_order_status
from commissions import CommissionService
from enrichment import OrderEnrichmentService
from errors import CollaboratorError, DuplicateCommissionError, NotFoundError
from ingest import import_statement
from ledger_store import LedgerStore
from logging_config import get_logger, setup_logging
from models import EnrichOptions, OrderStatus
from normalize import to_decimal
from pricing import PricingService
from report import format_import_report_json

logger = get_logger("finance-api")

MAX_STATEMENT_BYTES = 5 * 1024 * 1024

app = FastAPI(
    title="Order Finance API",
    version="1.0.0",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_store = LedgerStore()


class QuoteRequest(BaseModel):
    cost_price: Optional[Decimal] = Field(default=None, description="Unit cost; missing or <= 0 yields a zero quote.")
    target_revenue: Decimal = Field(default=Decimal("0"), description="Budget revenue used to pick a margin tier.")

    @field_validator("cost_price", "target_revenue", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Optional[Decimal]:
        return to_decimal(value)


class StatusRequest(BaseModel):
    status: OrderStatus


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": exc.errors()})


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(DuplicateCommissionError)
async def _duplicate_commission(request: Request, exc: DuplicateCommissionError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "error_kind": exc.error_kind.value,
            "order_id": exc.order_id,
            "slot": exc.slot,
        },
    )


@app.exception_handler(CollaboratorError)
async def _collaborator_error(request: Request, exc: CollaboratorError) -> JSONResponse:
    logger.error("api_collaborator_error | path=%s | error=%s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Ledger storage failure."})


@app.get("/health")
def health() -> dict[str, str]:
    """Service health check."""
    return {"status": "ok"}


@app.post("/statements/import")
async def statement_import(statement: UploadFile = File(...)) -> dict[str, Any]:
    content = await statement.read()
    if not content:
        raise HTTPException(status_code=400, detail="Statement file is empty.")
    if len(content) > MAX_STATEMENT_BYTES:
        raise HTTPException(status_code=400, detail="Statement file is too large.")

    report = import_statement(content, ledger_store)
    logger.info(
        "api_statement_import | file=%s | bytes=%s | imported=%s",
        statement.filename,
        len(content),
        report.imported_count,
    )
    return format_import_report_json(report)


@app.post("/pricing/quote")
def pricing_quote(payload: QuoteRequest = Body(...)) -> dict[str, Any]:
    quote = PricingService(ledger_store).quote(payload.cost_price, payload.target_revenue)
    return quote.model_dump(mode="json")


@app.post("/orders/{order_id}/commissions")
def create_commissions(order_id: str) -> list[dict[str, Any]]:
    created = CommissionService(ledger_store).create_for_order(order_id)
    return [entry.model_dump(mode="json") for entry in created]


@app.post("/commissions/recalculate")
def recalculate_commissions() -> dict[str, Any]:
    created = CommissionService(ledger_store).recalculate_all()
    return {
        "created_count": len(created),
        "created": [entry.model_dump(mode="json") for entry in created],
    }


@app.post("/orders/{order_id}/status")
def change_order_status(order_id: str, payload: StatusRequest = Body(...)) -> dict[str, Any]:
    changes = apply_order_status(order_id, payload.status, ledger_store)
    return {
        "order_id": order_id,
        "status": payload.status.value,
        "commission_changes": [change.model_dump(mode="json") for change in changes],
    }


@app.get("/orders/{order_id}/financials")
def order_financials(
    order_id: str,
    include_payments: bool = True,
    include_unread_notes: bool = False,
) -> dict[str, Any]:
    order = ledger_store.get_order(order_id)
    if order is None:
        raise NotFoundError("order", order_id)

    options = EnrichOptions(
        include_payments=include_payments,
        include_unread_notes=include_unread_notes,
        include_detailed_financials=True,
    )
    enriched = OrderEnrichmentService(ledger_store).enrich(order, options)
    return enriched.model_dump(mode="json")


if __name__ == "__main__":
    setup_logging()
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("api:app", host="0.0.0.0", port=port, reload=False)
