from typing import Literal

from fastapi import APIRouter, Response
from typing_extensions import TypedDict

from image_redirect.settings import settings

router = APIRouter(tags=["Health"])


class HealthResponse(TypedDict):
    status: Literal["pass"]


@router.get("/health", responses={200: {"model": HealthResponse}})
async def health():
    return {"status": "pass"}


@router.api_route("/_ping", methods=["GET", "HEAD"])
async def ping():
    """Docker clients call this before negotiating the API version."""
    return Response(
        content="OK",
        media_type="text/plain",
        headers={"Api-Version": settings.DEFAULT_API_VERSION},
    )
