"""Stable-id lookup and map upload endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from ...monitoring.metrics import record_relay_request
from ...utils.logging import setup_logger
from ..dependencies import MediaMapStore, get_media_map_store, require_upload_key

logger = setup_logger(__name__, context={"component": "lookup_api"})
router = APIRouter()


def _json(endpoint: str, content: dict[str, Any], status_code: int = status.HTTP_200_OK) -> JSONResponse:
    record_relay_request(endpoint, status_code)
    return JSONResponse(status_code=status_code, content=content)


@router.get("/lookup")
async def lookup(
    connection_id: str | None = Query(default=None, alias="connectionId"),
    media_id: str | None = Query(default=None, alias="mediaId"),
    store: MediaMapStore | None = Depends(get_media_map_store),
) -> JSONResponse:
    """Resolve a stable id published for a connection to its remote item id."""

    if not connection_id or not media_id:
        return _json("lookup", {"error": "connectionId and mediaId are required"}, status.HTTP_400_BAD_REQUEST)

    media_map = store.get() if store is not None else None
    if not media_map:
        return _json(
            "lookup",
            {"error": "No media map available. Upload one via /upload first."},
            status.HTTP_404_NOT_FOUND,
        )

    per_connection = media_map.get(connection_id)
    if not isinstance(per_connection, dict):
        return _json("lookup", {"error": "Connection not found in map"}, status.HTTP_404_NOT_FOUND)

    remote_item_id = per_connection.get(media_id)
    if not remote_item_id:
        return _json("lookup", {"error": "Media ID not found for connection"}, status.HTTP_404_NOT_FOUND)

    return _json(
        "lookup",
        {"connectionId": connection_id, "mediaId": media_id, "remoteItemId": remote_item_id},
    )


@router.post("/upload", dependencies=[Depends(require_upload_key)])
async def upload(
    request: Request,
    store: MediaMapStore | None = Depends(get_media_map_store),
) -> JSONResponse:
    """Replace the published map. Accepts ``{"map": {...}}`` or the bare map."""

    try:
        body = await request.json()
    except ValueError:
        return _json("upload", {"error": "Invalid JSON body"}, status.HTTP_400_BAD_REQUEST)

    media_map: Any = None
    if isinstance(body, dict):
        media_map = body.get("map") or body
    if not isinstance(media_map, dict):
        return _json("upload", {"error": "Invalid map payload"}, status.HTTP_400_BAD_REQUEST)

    if store is None:
        return _json(
            "upload",
            {
                "error": (
                    "No lookup store configured. Set COURIER_LOOKUP_DATABASE_URL "
                    "to a database URL and restart the relay."
                )
            },
            status.HTTP_501_NOT_IMPLEMENTED,
        )

    store.put(media_map)
    logger.info("Stored media map for %d connections", len(media_map), extra={"status": "success"})
    return _json("upload", {"ok": True, "message": "Map saved"})
