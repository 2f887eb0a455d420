"""
Signed file download routes
"""

import mimetypes

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from core.services import Services
from backend.api.deps import get_services

router = APIRouter()


@router.get("/{bucket}/{key:path}")
async def download_file(
    bucket: str,
    key: str,
    expires: int = Query(..., description="Expiry as a Unix timestamp"),
    signature: str = Query(..., description="HMAC signature of bucket/key/expires"),
    services: Services = Depends(get_services),
):
    """
    Serve a stored object through a signed URL.

    No caller headers are needed: the signature is the authorization.
    """
    if not services.storage.verify_signature(bucket, key, expires, signature):
        raise HTTPException(status_code=403, detail="Invalid or expired signature")
    if not services.storage.exists(bucket, key):
        raise HTTPException(status_code=404, detail="File not found")

    media_type, _ = mimetypes.guess_type(key)
    return Response(
        content=services.storage.get(bucket, key),
        media_type=media_type or "application/octet-stream",
    )
