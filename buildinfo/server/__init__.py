import logging
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from buildinfo import BuildInfo, Verification
from buildinfo.config import Settings

app = FastAPI()
templates = Jinja2Templates(directory=Path(__file__).parent / "templates")
logger = logging.getLogger(__name__)


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_build_info() -> BuildInfo:
    return BuildInfo.from_settings(get_settings())


@lru_cache
def get_verification() -> Verification:
    """Resolve once per process, results do not change while running"""
    verification = get_build_info().verify(get_settings())
    logger.info("Build verification: %s", verification.model_dump_json())
    return verification


@app.get("/build-info", name="build_info")
def build_info(
    info: Annotated[BuildInfo, Depends(get_build_info)],
) -> BuildInfo:
    return info


@app.get("/build-info/verify", name="verify")
def verify(
    verification: Annotated[Verification, Depends(get_verification)],
) -> Verification:
    return verification


@app.get("/attestation", response_class=HTMLResponse, name="attestation")
def attestation(
    request: Request,
    verification: Annotated[Verification, Depends(get_verification)],
):
    return templates.TemplateResponse(
        request,
        "attestation.html",
        {"verification": verification},
    )
