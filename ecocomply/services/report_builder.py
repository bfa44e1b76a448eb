"""
Custom report builder: saved configs, generation, and CSV / XLSX / JSON export.

A report config names a data type, the columns to project, filters
(``{field, operator, value}``), an optional date range on the data type's
date field, and an optional sort.  Results are always scoped to one company.
"""
from __future__ import annotations

import csv
import dataclasses
import enum
import io
import json
import logging
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Tuple

from openpyxl import Workbook
from sqlalchemy import Boolean, Date, DateTime, Float, Integer, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.models.database_models import (
    ComplianceScore,
    Deadline,
    EvidenceItem,
    Obligation,
    ReportConfig,
    Site,
)
from ecocomply.models.schemas import ReportConfigIn
from ecocomply.utils.helpers import utcnow

logger = logging.getLogger(__name__)

AVAILABLE_COLUMNS: Dict[str, List[str]] = {
    "obligations": [
        "id",
        "obligation_title",
        "obligation_description",
        "summary",
        "category",
        "status",
        "deadline_date",
        "frequency",
        "assigned_to",
        "confidence_score",
        "created_at",
        "updated_at",
    ],
    "evidence": [
        "id",
        "file_name",
        "file_size",
        "mime_type",
        "category",
        "description",
        "validation_status",
        "validated_at",
        "validated_by",
        "expiry_date",
        "is_archived",
        "created_at",
        "updated_at",
    ],
    "deadlines": [
        "id",
        "due_date",
        "compliance_period",
        "status",
        "completed_at",
        "completed_by",
        "is_late",
        "sla_target_date",
        "sla_breached_at",
        "created_at",
    ],
    "sites": [
        "id",
        "name",
        "site_name",
        "address",
        "postcode",
        "latitude",
        "longitude",
        "site_type",
        "status",
        "created_at",
        "updated_at",
    ],
    "compliance": [
        "id",
        "site_id",
        "compliance_date",
        "compliance_status",
        "compliance_percentage",
        "total_obligations",
        "completed_obligations",
        "overdue_obligations",
        "risk_level",
        "created_at",
    ],
}

DATA_TYPE_MODELS = {
    "obligations": Obligation,
    "evidence": EvidenceItem,
    "deadlines": Deadline,
    "sites": Site,
    "compliance": ComplianceScore,
}

DATE_FIELDS = {"deadlines": "due_date", "compliance": "compliance_date"}

# Report column name → model attribute where they differ
COLUMN_ALIASES = {"evidence": {"category": "evidence_type"}}

EXPORT_FORMATS = {
    "csv": ("text/csv", "csv"),
    "xlsx": ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "xlsx"),
    "json": ("application/json", "json"),
}


@dataclasses.dataclass
class ReportResult:
    data: List[Dict[str, Any]]
    total_rows: int
    columns: List[str]
    generated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "totalRows": self.total_rows,
            "columns": self.columns,
            "generatedAt": self.generated_at,
        }


# ---------------------------------------------------------------------------
# Column helpers
# ---------------------------------------------------------------------------

def get_available_columns(data_type: str) -> List[str]:
    return list(AVAILABLE_COLUMNS.get(data_type, []))


def invalid_columns(data_type: str, columns: List[str]) -> List[str]:
    available = set(AVAILABLE_COLUMNS.get(data_type, []))
    return [c for c in columns if c not in available]


def get_date_field(data_type: str) -> str:
    return DATE_FIELDS.get(data_type, "created_at")


def _column(model: Any, data_type: str, field: str):
    attr_name = COLUMN_ALIASES.get(data_type, {}).get(field, field)
    column = model.__table__.columns.get(attr_name)
    if column is None:
        raise ValueError(f"Unknown field for {data_type}: {field}")
    return getattr(model, attr_name), column


def _coerce(column: Any, value: Any, end_of_day: bool = False) -> Any:
    """Convert JSON filter values to the column's Python type."""
    if isinstance(value, (list, tuple)):
        return [_coerce(column, v) for v in value]
    if value is None:
        return None
    col_type = column.type
    if isinstance(col_type, DateTime) and isinstance(value, str):
        if "T" in value or " " in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        day = date.fromisoformat(value)
        return datetime.combine(day, time.max if end_of_day else time.min)
    if isinstance(col_type, Date) and isinstance(value, str):
        return date.fromisoformat(value[:10])
    if isinstance(col_type, Boolean) and isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    if isinstance(col_type, Integer) and isinstance(value, str):
        return int(value)
    if isinstance(col_type, Float) and isinstance(value, str):
        return float(value)
    return value


def apply_filter(stmt, model: Any, data_type: str, field: str, operator: str, value: Any):
    attr, column = _column(model, data_type, field)
    value = _coerce(column, value)
    if operator == "eq":
        return stmt.where(attr == value)
    if operator == "neq":
        return stmt.where(attr != value)
    if operator == "gt":
        return stmt.where(attr > value)
    if operator == "lt":
        return stmt.where(attr < value)
    if operator == "gte":
        return stmt.where(attr >= value)
    if operator == "lte":
        return stmt.where(attr <= value)
    if operator == "contains":
        return stmt.where(func.lower(attr).contains(str(value).lower()))
    if operator == "in":
        return stmt.where(attr.in_(value if isinstance(value, list) else [value]))
    raise ValueError(f"Unknown filter operator: {operator}")


def _serialise(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

async def generate_report(config: ReportConfigIn, company_id: str, db: AsyncSession) -> ReportResult:
    """
    Run *config* against the company's rows.

    Raises ValueError for unknown data types, fields or operators.
    """
    model = DATA_TYPE_MODELS.get(config.data_type)
    if model is None:
        raise ValueError(f"Unknown data type: {config.data_type}")

    stmt = select(model).where(model.company_id == company_id)
    for f in config.filters:
        stmt = apply_filter(stmt, model, config.data_type, f.field, f.operator, f.value)

    if config.date_range:
        attr, column = _column(model, config.data_type, get_date_field(config.data_type))
        stmt = stmt.where(
            attr >= _coerce(column, config.date_range.start),
            attr <= _coerce(column, config.date_range.end, end_of_day=True),
        )

    if config.sort_by:
        attr, _ = _column(model, config.data_type, config.sort_by.column)
        stmt = stmt.order_by(attr.asc() if config.sort_by.direction == "asc" else attr.desc())

    rows = (await db.execute(stmt)).scalars().all()
    aliases = COLUMN_ALIASES.get(config.data_type, {})
    data = [
        {col: _serialise(getattr(row, aliases.get(col, col), None)) for col in config.columns}
        for row in rows
    ]
    logger.info(
        "generate_report: %s for company %s — %d rows", config.data_type, company_id, len(data)
    )
    return ReportResult(
        data=data,
        total_rows=len(data),
        columns=list(config.columns),
        generated_at=utcnow().isoformat(),
    )


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def _csv_cell(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    return _cell(value)


def _export_csv(data: List[Dict[str, Any]], columns: List[str], include_headers: bool) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    if include_headers:
        writer.writerow(columns)
    for row in data:
        writer.writerow([_csv_cell(row.get(col)) for col in columns])
    return buf.getvalue().encode("utf-8")


def _export_xlsx(data: List[Dict[str, Any]], columns: List[str], include_headers: bool) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Report"
    if include_headers:
        ws.append(columns)
    for row in data:
        ws.append([_cell(row.get(col)) for col in columns])
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def export_report(
    data: List[Dict[str, Any]],
    columns: List[str],
    fmt: str,
    include_headers: bool = True,
) -> Tuple[bytes, str, str]:
    """
    Serialise report rows; returns ``(content, content_type, extension)``.

    XLSX export falls back to CSV if the workbook cannot be written.
    """
    if fmt == "csv":
        content_type, ext = EXPORT_FORMATS["csv"]
        return _export_csv(data, columns, include_headers), content_type, ext
    if fmt == "xlsx":
        try:
            content_type, ext = EXPORT_FORMATS["xlsx"]
            return _export_xlsx(data, columns, include_headers), content_type, ext
        except Exception as exc:
            logger.warning("XLSX export failed, falling back to CSV: %s", exc)
            content_type, ext = EXPORT_FORMATS["csv"]
            return _export_csv(data, columns, include_headers), content_type, ext
    if fmt == "json":
        content_type, ext = EXPORT_FORMATS["json"]
        return json.dumps(data, indent=2, default=str).encode("utf-8"), content_type, ext
    raise ValueError(f"Unsupported export format: {fmt}")


# ---------------------------------------------------------------------------
# Saved configs
# ---------------------------------------------------------------------------

def config_to_dict(row: ReportConfig) -> Dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "dataType": row.data_type,
        "columns": row.columns,
        "filters": row.filters or [],
        "dateRange": row.date_range,
        "groupBy": row.group_by,
        "sortBy": row.sort_by,
        "createdBy": row.created_by,
        "createdAt": row.created_at.isoformat() if row.created_at else None,
        "updatedAt": row.updated_at.isoformat() if row.updated_at else None,
    }


def config_from_row(row: ReportConfig) -> ReportConfigIn:
    return ReportConfigIn.model_validate(config_to_dict(row))


async def save_report_config(
    config: ReportConfigIn,
    company_id: str,
    user_id: Optional[str],
    db: AsyncSession,
) -> str:
    """Insert, or update in place when ``config.id`` names an existing config."""
    values = {
        "name": config.name,
        "description": config.description,
        "data_type": config.data_type,
        "columns": list(config.columns),
        "filters": [f.model_dump() for f in config.filters],
        "date_range": config.date_range.model_dump() if config.date_range else None,
        "group_by": config.group_by,
        "sort_by": config.sort_by.model_dump() if config.sort_by else None,
    }

    if config.id:
        row = await get_report_config(config.id, company_id, db)
        if row is None:
            raise LookupError(f"Report config not found: {config.id}")
        for key, value in values.items():
            setattr(row, key, value)
    else:
        row = ReportConfig(company_id=company_id, created_by=user_id, **values)
        db.add(row)

    await db.flush()
    return row.id


async def get_report_configs(company_id: str, db: AsyncSession) -> List[ReportConfig]:
    result = await db.execute(
        select(ReportConfig)
        .where(ReportConfig.company_id == company_id)
        .order_by(ReportConfig.created_at.desc())
    )
    return list(result.scalars().all())


async def get_report_config(
    config_id: str, company_id: str, db: AsyncSession
) -> Optional[ReportConfig]:
    result = await db.execute(
        select(ReportConfig).where(
            ReportConfig.id == config_id, ReportConfig.company_id == company_id
        )
    )
    return result.scalar_one_or_none()


async def delete_report_config(config_id: str, company_id: str, db: AsyncSession) -> bool:
    row = await get_report_config(config_id, company_id, db)
    if row is None:
        return False
    await db.delete(row)
    await db.flush()
    return True
