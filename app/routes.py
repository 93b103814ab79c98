import logging
import os

from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse

from app.vars import VERSION_FILE, VERSION_PATH
from .web_proxy.route import router as web_proxy_router

router = APIRouter()

logger = logging.getLogger("uvicorn.error")


def read_version_file(path: str = None) -> str:
    """Contents of the deployed VERSION artifact; raises OSError when unreadable."""
    with open(path or VERSION_FILE, "r", encoding="utf-8") as fh:
        return fh.read().strip()


@router.get(VERSION_PATH, response_class=PlainTextResponse)
async def version():
    """Serve the version artifact that proxied responses advertise."""
    try:
        return read_version_file()
    except OSError as e:
        logger.debug(f"[Version] {os.path.abspath(VERSION_FILE)} not readable: {e}")
        raise HTTPException(status_code=404, detail="VERSION not available")


router.include_router(web_proxy_router)
