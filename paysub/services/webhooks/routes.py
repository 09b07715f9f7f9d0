"""Gateway notification endpoints.

Both paths feed the same processor; dispatch is by the `action` field, not
by URL. No API key here: the HMAC signature is the authentication.
"""

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from paysub.services.api.deps import Container, get_container

router = APIRouter(tags=["webhooks"])


async def _receive(request: Request, container: Container, signature: str | None) -> JSONResponse:
    raw_body = await request.body()
    result = await container.webhooks.handle(raw_body, signature)
    return JSONResponse(status_code=result.http_status, content=result.body())


@router.post("/payments/webhook")
async def payment_webhook(
    request: Request,
    container: Container = Depends(get_container),
    x_signature: str | None = Header(default=None),
):
    return await _receive(request, container, x_signature)


@router.post("/subscriptions/webhook")
async def subscription_webhook(
    request: Request,
    container: Container = Depends(get_container),
    x_signature: str | None = Header(default=None),
):
    return await _receive(request, container, x_signature)
