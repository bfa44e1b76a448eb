"""
Custom report endpoints: available columns, saved configs, generation and export.

Request and response bodies use camelCase keys (dataType, dateRange, ...).
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.database import get_db
from ecocomply.dependencies.auth import (
    ALL_ROLES,
    MANAGER_ROLES,
    CurrentUser,
    get_current_user,
    require_role,
)
from ecocomply.models.schemas import ReportConfigIn, ReportExportRequest, ReportGenerateRequest
from ecocomply.services.report_builder import (
    AVAILABLE_COLUMNS,
    EXPORT_FORMATS,
    config_from_row,
    config_to_dict,
    delete_report_config,
    export_report,
    generate_report,
    get_available_columns,
    get_report_config,
    get_report_configs,
    invalid_columns,
    save_report_config,
)
from ecocomply.utils.api_response import ApiError, get_request_id, success_response

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_columns(config: ReportConfigIn) -> None:
    unknown = invalid_columns(config.data_type, config.columns)
    if unknown:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            f"Invalid columns for {config.data_type}: {', '.join(unknown)}",
            details={"invalid_columns": unknown},
        )


@router.get("/columns")
async def list_columns(
    request: Request,
    data_type: Optional[str] = Query(None, alias="dataType"),
    user: CurrentUser = Depends(get_current_user),
):
    if not data_type or data_type not in AVAILABLE_COLUMNS:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            f"dataType must be one of: {', '.join(AVAILABLE_COLUMNS)}",
            details={"field": "dataType"},
        )
    return success_response(
        request, {"dataType": data_type, "columns": get_available_columns(data_type)}
    )


# ---------------------------------------------------------------------------
# Saved configs
# ---------------------------------------------------------------------------

@router.get("/configs")
async def list_configs(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rows = await get_report_configs(user.company_id, db)
    return success_response(request, [config_to_dict(r) for r in rows])


@router.post("/configs", status_code=status.HTTP_201_CREATED)
async def create_config(
    request: Request,
    body: ReportConfigIn,
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    _check_columns(body)
    body.id = None
    config_id = await save_report_config(body, user.company_id, user.id, db)
    await db.commit()
    return success_response(
        request,
        {"id": config_id, "message": "Report configuration saved"},
        status.HTTP_201_CREATED,
    )


@router.get("/configs/{config_id}")
async def get_config(
    request: Request,
    config_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    row = await get_report_config(config_id, user.company_id, db)
    if row is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Report configuration not found")
    return success_response(request, config_to_dict(row))


@router.put("/configs/{config_id}")
async def update_config(
    request: Request,
    config_id: str,
    body: ReportConfigIn,
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    _check_columns(body)
    body.id = config_id
    try:
        await save_report_config(body, user.company_id, user.id, db)
    except LookupError:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Report configuration not found")
    await db.commit()
    row = await get_report_config(config_id, user.company_id, db)
    return success_response(request, config_to_dict(row))


@router.delete("/configs/{config_id}")
async def delete_config(
    request: Request,
    config_id: str,
    user: CurrentUser = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    if not await delete_report_config(config_id, user.company_id, db):
        raise ApiError(status.HTTP_404_NOT_FOUND, "Report configuration not found")
    await db.commit()
    return success_response(request, {"id": config_id, "message": "Report configuration deleted"})


# ---------------------------------------------------------------------------
# Generate / export
# ---------------------------------------------------------------------------

@router.post("/generate")
async def generate(
    request: Request,
    body: ReportGenerateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if body.config is not None:
        config = body.config
    elif body.config_id:
        row = await get_report_config(body.config_id, user.company_id, db)
        if row is None:
            raise ApiError(status.HTTP_404_NOT_FOUND, "Report configuration not found")
        config = config_from_row(row)
    else:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Either config or configId is required",
            details={"field": "config"},
        )

    _check_columns(config)
    try:
        result = await generate_report(config, user.company_id, db)
    except ValueError as exc:
        raise ApiError(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc))
    return success_response(request, result.to_dict())


@router.post("/export")
async def export(
    request: Request,
    body: ReportExportRequest,
    user: CurrentUser = Depends(get_current_user),
):
    fmt = body.format.lower()
    if fmt not in EXPORT_FORMATS:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            f"format must be one of: {', '.join(EXPORT_FORMATS)}",
            details={"field": "format"},
        )

    content, content_type, ext = export_report(
        body.result.data, body.result.columns, fmt, body.include_headers
    )
    file_name = body.file_name.replace('"', "").replace("\n", " ")
    logger.info("Report export: %s, %d rows, user=%s", fmt, len(body.result.data), user.id)
    return Response(
        content=content,
        media_type=content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{file_name}.{ext}"',
            "X-Request-Id": get_request_id(request),
        },
    )
