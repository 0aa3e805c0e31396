"""HMAC/shared-secret authentication and gateway-supplied caller identity."""

import hmac
import hashlib
from fastapi import Request, HTTPException

from ...authz import Caller, Role
from ...config import settings
from ...errors import NotAuthorized


def _auth_error(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"success": False, "error": "auth_error", "detail": detail},
    )


async def verify_signature(request: Request):
    """Validate requests using HMAC-SHA256 signature or shared secret.

    Header options (checked in order):
    1. X-LL-Signature: HMAC-SHA256 of request body using LL_API_SECRET
    2. X-LL-Secret: Direct match against LL_API_SECRET
    """
    api_secret = settings.require_api_secret()
    body = await request.body()

    # Option 1: HMAC signature
    signature = request.headers.get("X-LL-Signature")
    if signature:
        expected = hmac.new(
            api_secret.encode(),
            body,
            hashlib.sha256,
        ).hexdigest()
        if hmac.compare_digest(signature, expected):
            return True

    # Option 2: Direct secret
    secret = request.headers.get("X-LL-Secret")
    if secret and hmac.compare_digest(secret, api_secret):
        return True

    raise _auth_error("Invalid or missing authentication")


async def get_caller(request: Request) -> Caller:
    """Admin identity, forwarded by the authenticating gateway.

    X-LL-User and X-LL-Role are required; X-LL-Client and X-LL-Account carry
    the caller's tenant and account scope.
    """
    await verify_signature(request)

    user_id = request.headers.get("X-LL-User")
    role = request.headers.get("X-LL-Role")
    if not user_id or not role:
        raise _auth_error("Missing caller identity")

    try:
        parsed_role = Role.parse(role)
    except NotAuthorized as e:
        raise HTTPException(
            status_code=403,
            detail={"success": False, "error": e.code, "detail": str(e)},
        )

    return Caller(
        user_id=user_id,
        role=parsed_role,
        client_id=request.headers.get("X-LL-Client") or None,
        account_id=request.headers.get("X-LL-Account") or None,
    )
