"""
Response envelope, error codes, and cursor pagination helpers.

Success:  {"data": ..., "meta": {"request_id": ..., "pagination": {...}}}
Error:    {"error": {"code": ..., "message": ..., "details": ...}}
"""
from __future__ import annotations

import base64
import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy import and_, or_


# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

class ErrorCode:
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


_STATUS_TO_CODE: Dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: ErrorCode.BAD_REQUEST,
    status.HTTP_401_UNAUTHORIZED: ErrorCode.UNAUTHORIZED,
    status.HTTP_403_FORBIDDEN: ErrorCode.FORBIDDEN,
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: ErrorCode.PAYLOAD_TOO_LARGE,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ErrorCode.VALIDATION_ERROR,
    status.HTTP_429_TOO_MANY_REQUESTS: ErrorCode.RATE_LIMITED,
    status.HTTP_503_SERVICE_UNAVAILABLE: ErrorCode.SERVICE_UNAVAILABLE,
}


def code_for_status(status_code: int) -> str:
    return _STATUS_TO_CODE.get(status_code, ErrorCode.INTERNAL_ERROR)


class ApiError(HTTPException):
    """HTTPException carrying an explicit error code and structured details."""

    def __init__(
        self,
        status_code: int,
        message: str,
        code: Optional[str] = None,
        details: Any = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message)
        self.code = code or code_for_status(status_code)
        self.details = details


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------

def get_request_id(request: Request) -> str:
    """Request id assigned by the middleware, or a fresh one."""
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
    return request_id


def success_response(
    request: Request,
    data: Any,
    status_code: int = status.HTTP_200_OK,
    meta: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    request_id = get_request_id(request)
    body_meta: Dict[str, Any] = {"request_id": request_id}
    if meta:
        body_meta.update(meta)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"data": data, "meta": body_meta}),
        headers={"X-Request-Id": request_id},
    )


def error_response(
    request: Request,
    status_code: int,
    message: str,
    code: Optional[str] = None,
    details: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    request_id = get_request_id(request)
    response_headers = {"X-Request-Id": request_id}
    if headers:
        response_headers.update(headers)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "error": {
                "code": code or code_for_status(status_code),
                "message": message,
                "details": details,
            }
        }),
        headers=response_headers,
    )


def paginated_response(
    request: Request,
    items: List[Any],
    limit: int,
    has_more: bool,
    next_cursor: Optional[str],
) -> JSONResponse:
    return success_response(
        request,
        items,
        meta={
            "pagination": {
                "limit": limit,
                "has_more": has_more,
                "next_cursor": next_cursor,
            }
        },
    )


# ---------------------------------------------------------------------------
# Cursor pagination
# ---------------------------------------------------------------------------

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def create_cursor(row_id: str, created_at: datetime) -> str:
    """Opaque cursor encoding the last row's (created_at, id)."""
    payload = json.dumps({"id": row_id, "created_at": created_at.isoformat()})
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def parse_cursor(cursor: Optional[str]) -> Optional[Tuple[str, datetime]]:
    """Decode a cursor; raises ApiError(400) when it is malformed."""
    if not cursor:
        return None
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        return payload["id"], datetime.fromisoformat(payload["created_at"])
    except (ValueError, KeyError, TypeError) as exc:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "Invalid pagination cursor") from exc


def clamp_limit(limit: Optional[int]) -> int:
    if not limit or limit < 1:
        return DEFAULT_PAGE_SIZE
    return min(limit, MAX_PAGE_SIZE)


def apply_cursor(stmt, model, cursor: Optional[str], limit: int):
    """
    Order *stmt* newest-first and restrict it to rows after *cursor*.
    Fetches ``limit + 1`` rows so the caller can compute ``has_more``.
    """
    decoded = parse_cursor(cursor)
    if decoded is not None:
        last_id, last_created = decoded
        stmt = stmt.where(
            or_(
                model.created_at < last_created,
                and_(model.created_at == last_created, model.id < last_id),
            )
        )
    return stmt.order_by(model.created_at.desc(), model.id.desc()).limit(limit + 1)


def split_page(rows: List[Any], limit: int) -> Tuple[List[Any], bool, Optional[str]]:
    """Trim the ``limit + 1`` lookahead row and build the next cursor."""
    has_more = len(rows) > limit
    page = list(rows[:limit])
    next_cursor = None
    if has_more and page:
        last = page[-1]
        next_cursor = create_cursor(last.id, last.created_at)
    return page, has_more, next_cursor
