"""FastAPI JSON surface over the cached Google Sheets record store."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from gorkem_dashboard.config import Config, build_client_config, load_config
from gorkem_dashboard.storage.cache import SheetCache
from gorkem_dashboard.storage.errors import AuthRequired, NotFound, TransportError
from gorkem_dashboard.storage.sheet_store import TEMPLATE_HEADERS, SheetRecordStore


logger = logging.getLogger(__name__)


class RecordIn(BaseModel):
    date: str = ""
    description: str = ""
    amount: Optional[Union[float, str]] = None
    type: str = ""
    category: str = ""


class SheetCreate(BaseModel):
    name: str = Field(..., min_length=1)
    template: Optional[str] = None
    headers: List[str] = Field(default_factory=list)


class SheetRename(BaseModel):
    name: str = Field(..., min_length=1)
    old_name: Optional[str] = None


def create_app(config: Optional[Config] = None, cache: Optional[SheetCache] = None) -> FastAPI:
    """Create and configure the dashboard API application."""

    if cache is None:
        cfg = config or load_config()
        cache = SheetCache(SheetRecordStore(build_client_config(cfg)))

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await cache.wait_reconciled()

    app = FastAPI(
        title="Görkem İnşaat Dashboard API",
        description="Google Sheets backed records for the Görkem İnşaat dashboard",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.cache = cache

    @app.exception_handler(AuthRequired)
    async def handle_auth_required(request: Request, exc: AuthRequired) -> JSONResponse:
        return _error(status.HTTP_401_UNAUTHORIZED, str(exc))

    @app.exception_handler(NotFound)
    async def handle_not_found(request: Request, exc: NotFound) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(TransportError)
    async def handle_transport_error(request: Request, exc: TransportError) -> JSONResponse:
        logger.error("Google Sheets request failed", extra={"path": request.url.path, "error": str(exc)})
        return _error(status.HTTP_502_BAD_GATEWAY, str(exc))

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.get("/api/sheets")
    async def list_sheets() -> List[Dict[str, Any]]:
        return [sheet.to_dict() for sheet in await cache.list_sheets()]

    @app.post("/api/sheets", status_code=status.HTTP_201_CREATED)
    async def create_sheet(payload: SheetCreate) -> Dict[str, Any]:
        sheet = await cache.create_sheet(
            payload.name.strip(), headers=payload.headers, template=payload.template
        )
        return sheet.to_dict()

    @app.patch("/api/sheets/{sheet_tab_id}")
    async def rename_sheet(sheet_tab_id: int, payload: SheetRename) -> Dict[str, str]:
        await cache.rename_sheet(sheet_tab_id, payload.name, old_name=payload.old_name)
        return {"status": "ok"}

    @app.delete("/api/sheets/{sheet_tab_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_sheet(sheet_tab_id: int, name: Optional[str] = None) -> Response:
        await cache.delete_sheet(sheet_tab_id, sheet_name=name)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/api/sheets/{sheet_name}/data")
    async def get_sheet_data(sheet_name: str, refresh: bool = False) -> Dict[str, Any]:
        data = await cache.get_sheet_data(sheet_name, refresh=refresh)
        return data.to_dict()

    @app.get("/api/sheets/{sheet_name}/mapping")
    async def get_column_mapping(sheet_name: str) -> Dict[str, int]:
        return await cache.store.get_column_mapping(sheet_name)

    @app.post("/api/sheets/{sheet_name}/records", status_code=status.HTTP_201_CREATED)
    async def add_record(sheet_name: str, payload: RecordIn) -> Dict[str, str]:
        await cache.append_record(sheet_name, payload.model_dump())
        return {"status": "ok"}

    @app.put("/api/sheets/{sheet_name}/records/{row_index}")
    async def update_record(sheet_name: str, row_index: int, record: Dict[str, Optional[str]]) -> Dict[str, str]:
        if row_index < 0:
            raise ValueError("Row index must be >= 0")
        await cache.update_record(sheet_name, row_index, record)
        return {"status": "ok"}

    @app.get("/api/templates")
    async def list_templates() -> Dict[str, List[str]]:
        return {name: list(headers) for name, headers in TEMPLATE_HEADERS.items()}

    return app


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})
