"""FastAPI application for transfer queries and indexing status."""

import logging
from collections.abc import Sequence
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Path, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from erc20_indexer import __version__
from erc20_indexer.api.schemas import HealthResponse, IndexingStatusResponse, TransfersResponse
from erc20_indexer.api.service import DEFAULT_LIMIT, MAX_LIMIT, InvalidAddressError, QueryService
from erc20_indexer.storage.errors import StoreError

logger = logging.getLogger(__name__)

router = APIRouter()


def get_query_service(request: Request) -> QueryService:
    return request.app.state.query_service


@router.get("/transfers/{address}", response_model=TransfersResponse, tags=["transfers"])
async def get_transfers(
    address: str = Path(..., description="Sender or recipient address"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT, description="Maximum records to return"),
    service: QueryService = Depends(get_query_service),
) -> TransfersResponse:
    """Transfers where the address is sender or recipient, newest block first"""
    return await service.list_transfers(address, limit)


@router.get("/indexing/status", response_model=IndexingStatusResponse, tags=["status"])
async def get_indexing_status(
    service: QueryService = Depends(get_query_service),
) -> IndexingStatusResponse:
    """Last indexed block and configuration state"""
    return await service.status()


@router.get("/health", response_model=HealthResponse, tags=["status"])
async def health() -> HealthResponse:
    return HealthResponse()


async def _invalid_address_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def _store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("Store unavailable for %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Store unavailable"})


def create_app(
    service: QueryService,
    *,
    cors_origins: Sequence[str] = ("*",),
    api_prefix: str = "",
    lifespan: Any = None,
) -> FastAPI:
    """Build the HTTP application around ``service``.

    Args:
        service: Query service answering every route.
        cors_origins: Allowed CORS origins.
        api_prefix: Prefix for all routes, e.g. ``/api``.
        lifespan: Optional FastAPI lifespan context.
    """
    app = FastAPI(
        title="ERC20 Transfer Indexer API",
        description="Per-address Transfer queries and indexing status",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.query_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins),
        allow_credentials="*" not in cors_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.add_exception_handler(InvalidAddressError, _invalid_address_handler)
    app.add_exception_handler(StoreError, _store_error_handler)
    app.include_router(router, prefix=api_prefix)
    return app
