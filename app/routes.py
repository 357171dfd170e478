import logging

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from app.vars import ROUTE_PREFIX, TUNNEL_PATH
from .browse.route import router as browse_router

router = APIRouter()

logger = logging.getLogger("uvicorn.error")

logger.info(f"Serving proxied pages under {ROUTE_PREFIX}")


@router.get("/", response_class=PlainTextResponse)
async def root():
    return (
        f"Proxy running. Use {ROUTE_PREFIX}<encoded_url>. "
        f"{TUNNEL_PATH} is reserved for the tunnel endpoint."
    )


router.include_router(browse_router)
