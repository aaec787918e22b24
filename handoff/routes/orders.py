from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from handoff.models import CachedResponse
from handoff.orchestrator import HandoffOrchestrator

router = APIRouter(prefix="/orders", tags=["orders"])


class StartLegBody(BaseModel):
    rider_id: str = Field(..., min_length=1, description="Rider taking over the order")


class FinishLegBody(BaseModel):
    rider_id: str = Field(..., min_length=1, description="Rider ending the current leg")
    is_final_delivery: bool = Field(default=False, description="True when the order reaches its destination")


def _orchestrator(request: Request) -> HandoffOrchestrator:
    return request.app.state.orchestrator


def _require_key(idempotency_key: str | None) -> str:
    if not idempotency_key:
        raise HTTPException(status_code=400, detail="Idempotency-Key header is required")
    return idempotency_key


def _replay(cached: CachedResponse) -> Response:
    # Body is sent exactly as first produced so retries are byte-identical.
    return Response(content=cached.body, status_code=cached.status_code, media_type="application/json")


@router.post("", status_code=201)
async def create_order(request: Request) -> JSONResponse:
    view = await _orchestrator(request).create_order()
    return JSONResponse(status_code=201, content=view.model_dump(mode="json"))


@router.get("/{order_id}")
async def get_order(order_id: str, request: Request) -> JSONResponse:
    """Order with its full, ordered leg history. No locking."""
    view = await _orchestrator(request).get_order(order_id)
    return JSONResponse(status_code=200, content=view.model_dump(mode="json"))


@router.post("/{order_id}/legs/start")
async def start_leg(
    order_id: str,
    body: StartLegBody,
    request: Request,
    idempotency_key: str | None = Header(default=None),
) -> Response:
    """
    Rider picks up the order. Same Idempotency-Key twice -> the first response replayed.
    """
    key = _require_key(idempotency_key)
    cached = await _orchestrator(request).start_leg(order_id, body.rider_id, key)
    return _replay(cached)


@router.post("/{order_id}/legs/finish")
async def finish_leg(
    order_id: str,
    body: FinishLegBody,
    request: Request,
    idempotency_key: str | None = Header(default=None),
) -> Response:
    """
    Rider hands the order off (is_final_delivery=false) or delivers it (true).
    Same Idempotency-Key twice -> the first response replayed.
    """
    key = _require_key(idempotency_key)
    cached = await _orchestrator(request).finish_leg(order_id, body.rider_id, body.is_final_delivery, key)
    return _replay(cached)
