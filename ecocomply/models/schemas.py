"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field, ConfigDict, EmailStr, field_validator
from typing import Optional, List, Dict, Any, Literal
from datetime import date, datetime

from ecocomply.models.database_models import (
    DocumentType,
    ExtractionStatus,
    Frequency,
    NotificationChannel,
    NotificationStatus,
    ObligationCategory,
    PackStatus,
    PackType,
    ReviewStatus,
)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class SignupRequest(BaseModel):
    """Self-service signup: creates a company and its first OWNER."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    full_name: str = Field(..., min_length=1, max_length=255)
    company_name: str = Field(..., min_length=1, max_length=255)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class UserOut(BaseModel):
    id: str
    company_id: str
    email: str
    full_name: Optional[str] = None
    roles: List[str] = []
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Sites
# ---------------------------------------------------------------------------

class SiteCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    site_name: Optional[str] = None
    address: Optional[str] = None
    postcode: Optional[str] = Field(None, max_length=20)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    site_type: Optional[str] = None
    regulator: Optional[str] = None


class SiteUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    site_name: Optional[str] = None
    address: Optional[str] = None
    postcode: Optional[str] = Field(None, max_length=20)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    site_type: Optional[str] = None
    regulator: Optional[str] = None
    status: Optional[str] = None


class SiteOut(BaseModel):
    id: str
    company_id: str
    name: str
    site_name: Optional[str] = None
    address: Optional[str] = None
    postcode: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    site_type: Optional[str] = None
    regulator: Optional[str] = None
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class DocumentUpdate(BaseModel):
    """Editable document fields.  ``metadata`` is merged into the stored dict."""

    title: Optional[str] = None
    reference_number: Optional[str] = Field(None, max_length=100)
    status: Optional[Literal["ACTIVE", "SUPERSEDED", "EXPIRED", "ARCHIVED"]] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            value = value.strip()
            if not value:
                raise ValueError("Title cannot be empty")
            if len(value) > 500:
                raise ValueError("Title must be 500 characters or fewer")
        return value


class DocumentOut(BaseModel):
    id: str
    company_id: str
    site_id: str
    document_type: DocumentType
    title: str
    reference_number: Optional[str] = None
    original_filename: str
    file_size_bytes: int
    mime_type: Optional[str] = None
    page_count: Optional[int] = None
    status: str
    extraction_status: ExtractionStatus
    extraction_error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="metadata_json")
    uploaded_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Obligations
# ---------------------------------------------------------------------------

class ObligationUpdate(BaseModel):
    """
    Editable obligation fields.  ``document_id`` is accepted only so the
    handler can reject attempts to move an obligation between documents.
    """

    document_id: Optional[str] = None
    obligation_title: Optional[str] = Field(None, max_length=255)
    obligation_description: Optional[str] = None
    summary: Optional[str] = None
    category: Optional[ObligationCategory] = None
    frequency: Optional[Frequency] = None
    deadline_date: Optional[date] = None
    status: Optional[Literal["PENDING", "IN_PROGRESS", "COMPLETED", "OVERDUE"]] = None
    assigned_to: Optional[str] = None
    condition_reference: Optional[str] = Field(None, max_length=100)
    is_subjective: Optional[bool] = None

    @field_validator("obligation_title")
    @classmethod
    def _title_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("Title cannot be empty")
        return value.strip() if value else value


class MarkNotApplicableRequest(BaseModel):
    reason: Optional[str] = None


class ObligationOut(BaseModel):
    id: str
    company_id: str
    site_id: str
    document_id: str
    condition_reference: Optional[str] = None
    obligation_title: str
    obligation_description: Optional[str] = None
    original_text: Optional[str] = None
    summary: Optional[str] = None
    category: ObligationCategory
    frequency: Optional[Frequency] = None
    deadline_date: Optional[date] = None
    status: str
    review_status: ReviewStatus
    is_subjective: bool
    is_improvement: bool
    page_reference: Optional[int] = None
    confidence_score: Optional[float] = None
    suggested_evidence_types: Optional[List[str]] = None
    assigned_to: Optional[str] = None
    version_number: int
    version_history: Optional[List[Dict[str, Any]]] = None
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ScheduleOut(BaseModel):
    id: str
    frequency: Frequency
    base_date: date
    next_due_date: Optional[date] = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class DeadlineOut(BaseModel):
    id: str
    due_date: date
    compliance_period: Optional[str] = None
    status: str
    completed_at: Optional[datetime] = None
    is_late: bool

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------

class ReviewQueueItemOut(BaseModel):
    id: str
    company_id: str
    site_id: str
    document_id: str
    obligation_id: Optional[str] = None
    review_type: str
    is_blocking: bool
    priority: int
    review_status: str
    review_action: Optional[str] = None
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReviewActionRequest(BaseModel):
    action: Literal["CONFIRM", "REJECT"]
    reason: Optional[str] = None


class ApplyToSimilar(BaseModel):
    review_type: str = Field(..., min_length=1)
    confidence_threshold: float = Field(..., ge=0, le=1)


class BulkReviewRequest(BaseModel):
    action: Literal["CONFIRM", "REJECT"]
    item_ids: List[str] = Field(..., min_length=1)
    reason: Optional[str] = None
    apply_to_similar: Optional[ApplyToSimilar] = None


class PatternCandidateOut(BaseModel):
    id: str
    company_id: Optional[str] = None
    pattern_text: str
    category: Optional[ObligationCategory] = None
    sample_count: int
    match_rate: Optional[float] = None
    status: str
    extraction_template: Optional[Dict[str, Any]] = None
    matching: Optional[Dict[str, Any]] = None
    regulator: Optional[str] = None
    document_type: Optional[str] = None
    usage_count: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PatternCandidateUpdate(BaseModel):
    status: Literal["APPROVED", "REJECTED"]
    category: Optional[ObligationCategory] = None


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------

class EvidenceLinkRequest(BaseModel):
    obligation_id: str = Field(..., min_length=1)
    compliance_period: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = None


class EvidenceOut(BaseModel):
    id: str
    company_id: str
    site_id: str
    file_name: str
    file_type: str
    file_size: int
    mime_type: Optional[str] = None
    file_hash: str
    description: Optional[str] = None
    evidence_type: Optional[str] = None
    compliance_period: Optional[str] = None
    validation_status: str
    expiry_date: Optional[date] = None
    is_archived: bool
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="metadata_json")
    uploaded_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EvidenceLinkOut(BaseModel):
    id: str
    obligation_id: str
    evidence_id: str
    compliance_period: Optional[str] = None
    linked_by: Optional[str] = None
    notes: Optional[str] = None
    unlinked_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Packs
# ---------------------------------------------------------------------------

class PackGenerateRequest(BaseModel):
    """``pack_type`` is validated by the handler so the error message is explicit."""

    pack_type: str
    company_id: Optional[str] = None
    site_id: Optional[str] = None
    document_id: Optional[str] = None
    date_range_start: Optional[date] = None
    date_range_end: Optional[date] = None
    filters: Optional[Dict[str, List[str]]] = None
    recipient_type: Optional[str] = None
    recipient_name: Optional[str] = None
    purpose: Optional[str] = None


class PackShareRequest(BaseModel):
    expires_in_days: int = Field(30, ge=1, le=365)
    distributed_to: Optional[str] = None


class PackSignRequest(BaseModel):
    signature_type: Literal["INTERNAL", "AUDITOR_ATTESTATION"] = "INTERNAL"


class PackOut(BaseModel):
    id: str
    company_id: str
    site_id: Optional[str] = None
    document_id: Optional[str] = None
    pack_type: PackType
    title: str
    status: PackStatus
    date_range_start: Optional[date] = None
    date_range_end: Optional[date] = None
    filters: Optional[Dict[str, Any]] = None
    recipient_type: str
    recipient_name: Optional[str] = None
    purpose: Optional[str] = None
    file_size_bytes: Optional[int] = None
    content_hash: Optional[str] = None
    total_obligations: int
    total_evidence: int
    compliance_score: Optional[float] = None
    error_message: Optional[str] = None
    generated_by: Optional[str] = None
    generated_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Reports (camelCase on the wire)
# ---------------------------------------------------------------------------

class ReportFilterIn(BaseModel):
    field: str
    operator: Literal["eq", "neq", "gt", "lt", "gte", "lte", "contains", "in"]
    value: Any = None


class ReportSortIn(BaseModel):
    column: str
    direction: Literal["asc", "desc"] = "asc"


class ReportDateRangeIn(BaseModel):
    start: str
    end: str


class ReportConfigIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    data_type: Literal["obligations", "evidence", "deadlines", "sites", "compliance"] = Field(
        ..., alias="dataType"
    )
    columns: List[str] = Field(..., min_length=1)
    filters: List[ReportFilterIn] = []
    date_range: Optional[ReportDateRangeIn] = Field(None, alias="dateRange")
    group_by: Optional[str] = Field(None, alias="groupBy")
    sort_by: Optional[ReportSortIn] = Field(None, alias="sortBy")


class ReportGenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    config: Optional[ReportConfigIn] = None
    config_id: Optional[str] = Field(None, alias="configId")


class ReportResultIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: List[Dict[str, Any]]
    total_rows: int = Field(0, alias="totalRows")
    columns: List[str]
    generated_at: Optional[str] = Field(None, alias="generatedAt")


class ReportExportRequest(BaseModel):
    """``format`` is validated by the handler to return the documented message."""

    model_config = ConfigDict(populate_by_name=True)

    result: ReportResultIn
    format: str
    file_name: str = Field("report", alias="fileName", min_length=1, max_length=200)
    include_headers: bool = Field(True, alias="includeHeaders")


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class NotificationPreferenceIn(BaseModel):
    notification_type: str = Field(..., min_length=1)
    channel_preference: Literal[
        "EMAIL_ONLY", "SMS_ONLY", "IN_APP_ONLY", "EMAIL_AND_SMS", "ALL_CHANNELS"
    ] = "ALL_CHANNELS"
    frequency_preference: Literal[
        "IMMEDIATE", "DAILY_DIGEST", "WEEKLY_DIGEST", "NEVER"
    ] = "IMMEDIATE"
    enabled: bool = True


class NotificationPreferencesUpdate(BaseModel):
    preferences: List[NotificationPreferenceIn] = Field(..., min_length=1)


class NotificationOut(BaseModel):
    id: str
    notification_type: str
    channel: NotificationChannel
    priority: str
    subject: Optional[str] = None
    body_text: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    status: NotificationStatus
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TemplateVersionCreate(BaseModel):
    name: Optional[str] = None
    subject_template: str = Field(..., min_length=1)
    body_html_template: Optional[str] = None
    body_text_template: Optional[str] = None
    variables: Optional[List[str]] = None


class TemplateRollbackRequest(BaseModel):
    version: int = Field(..., ge=1)


class NotificationTemplateOut(BaseModel):
    id: str
    template_code: str
    version: int
    name: Optional[str] = None
    subject_template: str
    body_html_template: Optional[str] = None
    body_text_template: Optional[str] = None
    variables: Optional[List[str]] = None
    is_active: bool
    effective_from: Optional[datetime] = None
    effective_until: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
