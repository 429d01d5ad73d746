"""
Webhooks API Endpoints
Receives voice provider (Vapi) call events
"""
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from atlas.api.v1.dependencies import get_container
from atlas.core.security import verify_vapi_request
from atlas.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/vapi")
async def vapi_webhook(
    request: Request,
    container: ServiceContainer = Depends(get_container)
):
    """
    Handle a Vapi server message.

    Returns 401 for an unverified request and 400 for a body that is not
    JSON. Every other request gets 200, including events that are dropped
    or fail internally, so the provider does not retry them.
    """
    body = await request.body()

    if not verify_vapi_request(body, request.headers, container.settings.vapi_webhook_secret):
        logger.warning("Rejected unverified Vapi webhook")
        return JSONResponse(status_code=401, content={"error": "unauthorized"})

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Vapi webhook body is not valid JSON")
        return JSONResponse(status_code=400, content={"error": "invalid json"})

    try:
        handled = await container.calls.handle_webhook_event(
            payload, header_call_id=request.headers.get("x-call-id")
        )
        logger.debug(f"Vapi webhook handled: {handled}")
    except Exception as e:
        logger.error(f"Error handling Vapi webhook: {e}", exc_info=True)

    return {"message": "ok"}
