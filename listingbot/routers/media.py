from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse

from listingbot.dependencies import get_media_store
from listingbot.services.media_store import LocalMediaStore, MediaStoreError

router = APIRouter()


@router.get("/media/{media_path:path}")
async def serve_media(
    media_path: str,
    sig: str,
    expires: Optional[int] = None,
    store: LocalMediaStore = Depends(get_media_store),
):
    """Serve locally stored media via signed URLs; links without `expires` are permanent."""
    normalized_path = (media_path or "").strip().lstrip("/")
    if not normalized_path:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing media path")
    if not store.verify_signed_path(normalized_path, expires, sig):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired signature")

    try:
        target_path = store.resolve_path(normalized_path)
    except MediaStoreError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid media path")
    if not target_path.exists() or not target_path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media not found")

    return FileResponse(target_path)
