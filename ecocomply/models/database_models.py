"""
SQLAlchemy ORM models for the EcoComply database.

Primary keys are UUID strings so the schema is identical on PostgreSQL and
SQLite.  Company scoping is applied in queries; every tenant-owned table
carries ``company_id``.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Date,
    DateTime,
    ForeignKey,
    Float,
    Boolean,
    Enum as SQLEnum,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.sql import func
import enum
import uuid

from ecocomply.database import Base
from ecocomply.utils.helpers import utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


# Enums
class UserRole(str, enum.Enum):
    """Role strings checked per route."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    STAFF = "STAFF"


class DocumentType(str, enum.Enum):
    """Stored document types (the API accepts PERMIT / CONSENT / MCPD_REGISTRATION)."""

    ENVIRONMENTAL_PERMIT = "ENVIRONMENTAL_PERMIT"
    TRADE_EFFLUENT_CONSENT = "TRADE_EFFLUENT_CONSENT"
    MCPD_REGISTRATION = "MCPD_REGISTRATION"


class ExtractionStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ObligationCategory(str, enum.Enum):
    """Obligation categories recognised by the extraction prompt."""

    MONITORING = "MONITORING"
    REPORTING = "REPORTING"
    RECORD_KEEPING = "RECORD_KEEPING"
    OPERATIONAL = "OPERATIONAL"
    MAINTENANCE = "MAINTENANCE"


class Frequency(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUAL = "ANNUAL"
    ONE_TIME = "ONE_TIME"
    CONTINUOUS = "CONTINUOUS"
    EVENT_TRIGGERED = "EVENT_TRIGGERED"


class ReviewStatus(str, enum.Enum):
    PENDING_REVIEW = "PENDING_REVIEW"
    AUTO_CONFIRMED = "AUTO_CONFIRMED"
    CONFIRMED = "CONFIRMED"
    EDITED = "EDITED"
    REJECTED = "REJECTED"
    NOT_APPLICABLE = "NOT_APPLICABLE"


class PackType(str, enum.Enum):
    AUDIT_PACK = "AUDIT_PACK"
    REGULATOR_INSPECTION = "REGULATOR_INSPECTION"
    TENDER_CLIENT_ASSURANCE = "TENDER_CLIENT_ASSURANCE"
    BOARD_MULTI_SITE_RISK = "BOARD_MULTI_SITE_RISK"
    INSURER_BROKER = "INSURER_BROKER"


class PackStatus(str, enum.Enum):
    GENERATING = "GENERATING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    DISTRIBUTED = "DISTRIBUTED"


class NotificationChannel(str, enum.Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    IN_APP = "IN_APP"


class NotificationStatus(str, enum.Enum):
    PENDING = "PENDING"
    QUEUED = "QUEUED"
    SENDING = "SENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    BOUNCED = "BOUNCED"
    COMPLAINED = "COMPLAINED"
    RETRYING = "RETRYING"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# ---------------------------------------------------------------------------
# Tenancy
# ---------------------------------------------------------------------------

class Company(Base):
    """Tenant.  Every user, site, and document belongs to exactly one company."""

    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    company_number = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class User(Base):
    """Application user with one or more role strings."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)
    roles = Column(JSON, nullable=False, default=list)  # ["OWNER"], ["STAFF"], ...
    is_active = Column(Boolean, default=True, nullable=False)
    settings = Column(JSON, nullable=True)  # {"notification_preferences": [...]}
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Site(Base):
    """Physical site covered by permits and consents."""

    __tablename__ = "sites"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    site_name = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    postcode = Column(String(20), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    site_type = Column(String(50), nullable=True)
    regulator = Column(String(50), nullable=True)  # EA, SEPA, NRW, NIEA
    status = Column(String(20), default="ACTIVE", nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class SiteAssignment(Base):
    """A document made available to an additional site."""

    __tablename__ = "site_assignments"
    __table_args__ = (UniqueConstraint("site_id", "document_id", name="uq_site_assignment"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    obligations_shared = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


# ---------------------------------------------------------------------------
# Documents and obligations
# ---------------------------------------------------------------------------

class Document(Base):
    """Uploaded permit / consent / registration."""

    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    document_type = Column(SQLEnum(DocumentType), nullable=False)
    title = Column(String(500), nullable=False)
    reference_number = Column(String(100), nullable=True)
    original_filename = Column(String(255), nullable=False)
    storage_path = Column(String(512), nullable=False)
    file_size_bytes = Column(Integer, nullable=False, default=0)
    mime_type = Column(String(100), nullable=True)
    page_count = Column(Integer, nullable=True)
    extracted_text = Column(Text, nullable=True)
    status = Column(String(20), default="ACTIVE", nullable=False)  # ACTIVE, SUPERSEDED, EXPIRED, ARCHIVED
    extraction_status = Column(SQLEnum(ExtractionStatus), default=ExtractionStatus.PENDING, nullable=False)
    extraction_error = Column(Text, nullable=True)
    metadata_json = Column(JSON, nullable=True)
    uploaded_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Obligation(Base):
    """Compliance requirement extracted from (or entered against) a document."""

    __tablename__ = "obligations"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    condition_reference = Column(String(100), nullable=True)
    obligation_title = Column(String(255), nullable=False)
    obligation_description = Column(Text, nullable=True)
    original_text = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    category = Column(SQLEnum(ObligationCategory), nullable=False)
    frequency = Column(SQLEnum(Frequency), nullable=True)
    deadline_date = Column(Date, nullable=True)
    status = Column(String(30), default="PENDING", nullable=False)  # PENDING, IN_PROGRESS, COMPLETED, OVERDUE, NOT_APPLICABLE
    review_status = Column(SQLEnum(ReviewStatus), default=ReviewStatus.PENDING_REVIEW, nullable=False)
    is_subjective = Column(Boolean, default=False, nullable=False)
    is_improvement = Column(Boolean, default=False, nullable=False)
    page_reference = Column(Integer, nullable=True)
    confidence_score = Column(Float, nullable=True)
    suggested_evidence_types = Column(JSON, nullable=True)
    assigned_to = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    version_number = Column(Integer, default=1, nullable=False)
    version_history = Column(JSON, nullable=True)
    review_notes = Column(Text, nullable=True)
    reviewed_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Schedule(Base):
    """Recurring monitoring schedule derived from an obligation's frequency."""

    __tablename__ = "schedules"

    id = Column(String(36), primary_key=True, default=_uuid)
    obligation_id = Column(String(36), ForeignKey("obligations.id", ondelete="CASCADE"), nullable=False, index=True)
    frequency = Column(SQLEnum(Frequency), nullable=False)
    base_date = Column(Date, nullable=False)
    next_due_date = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


class Deadline(Base):
    """A single due date for an obligation."""

    __tablename__ = "deadlines"

    id = Column(String(36), primary_key=True, default=_uuid)
    obligation_id = Column(String(36), ForeignKey("obligations.id", ondelete="CASCADE"), nullable=False, index=True)
    schedule_id = Column(String(36), ForeignKey("schedules.id", ondelete="SET NULL"), nullable=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    due_date = Column(Date, nullable=False)
    compliance_period = Column(String(20), nullable=True)
    status = Column(String(20), default="PENDING", nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(String(36), nullable=True)
    is_late = Column(Boolean, default=False, nullable=False)
    sla_target_date = Column(Date, nullable=True)
    sla_breached_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


class ReviewQueueItem(Base):
    """Extraction result that needs a human to look at it."""

    __tablename__ = "review_queue_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    obligation_id = Column(String(36), ForeignKey("obligations.id", ondelete="CASCADE"), nullable=True)
    review_type = Column(String(50), nullable=False)  # LOW_CONFIDENCE_EXTRACTION, SUBJECTIVE_LANGUAGE, ...
    is_blocking = Column(Boolean, default=False, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    review_status = Column(String(20), default="PENDING", nullable=False)
    review_action = Column(String(20), nullable=True)  # CONFIRM, REJECT
    review_notes = Column(Text, nullable=True)
    reviewed_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


class PatternCandidate(Base):
    """Recurring obligation phrasing that may be promoted into the rule library."""

    __tablename__ = "pattern_candidates"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=True, index=True)
    pattern_text = Column(Text, nullable=False)  # regex, matched case-insensitively
    category = Column(SQLEnum(ObligationCategory), nullable=True)
    sample_count = Column(Integer, default=1, nullable=False)
    match_rate = Column(Float, nullable=True)
    status = Column(String(20), default="PENDING_REVIEW", nullable=False)  # PENDING_REVIEW, APPROVED, REJECTED
    # {"frequency", "is_subjective", "condition_type", "evidence_types"}
    extraction_template = Column(JSON, nullable=True)
    # {"regex_variants", "semantic_keywords", "negative_patterns"}
    matching = Column(JSON, nullable=True)
    regulator = Column(String(20), nullable=True)
    document_type = Column(String(50), nullable=True)
    source_obligation_ids = Column(JSON, nullable=True)
    usage_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


class ExtractionLog(Base):
    """Token usage and cost of one extraction run."""

    __tablename__ = "extraction_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    model_identifier = Column(String(50), nullable=False)
    input_tokens = Column(Integer, default=0, nullable=False)
    output_tokens = Column(Integer, default=0, nullable=False)
    estimated_cost = Column(Float, default=0.0, nullable=False)
    obligations_extracted = Column(Integer, default=0, nullable=False)
    rule_library_hits = Column(Integer, default=0, nullable=False)
    processing_time_ms = Column(Integer, nullable=True)
    errors = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------

class EvidenceItem(Base):
    """Uploaded file demonstrating an obligation was met."""

    __tablename__ = "evidence_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    file_type = Column(String(20), nullable=False)  # PDF, IMAGE, CSV, XLSX, ZIP, DOCUMENT
    file_size = Column(Integer, nullable=False, default=0)
    mime_type = Column(String(100), nullable=True)
    storage_path = Column(String(512), nullable=False)
    file_hash = Column(String(64), nullable=False)
    description = Column(Text, nullable=True)
    evidence_type = Column(String(50), nullable=True)
    compliance_period = Column(String(20), nullable=True)
    validation_status = Column(String(20), default="PENDING", nullable=False)
    validated_at = Column(DateTime(timezone=True), nullable=True)
    validated_by = Column(String(36), nullable=True)
    expiry_date = Column(Date, nullable=True)
    is_archived = Column(Boolean, default=False, nullable=False)
    metadata_json = Column(JSON, nullable=True)
    uploaded_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class ObligationEvidenceLink(Base):
    """Evidence ↔ obligation link.  Unlinking sets ``unlinked_at``; rows are never deleted."""

    __tablename__ = "obligation_evidence_links"

    id = Column(String(36), primary_key=True, default=_uuid)
    obligation_id = Column(String(36), ForeignKey("obligations.id", ondelete="CASCADE"), nullable=False, index=True)
    evidence_id = Column(String(36), ForeignKey("evidence_items.id", ondelete="CASCADE"), nullable=False, index=True)
    compliance_period = Column(String(20), nullable=True)
    linked_by = Column(String(36), nullable=True)
    notes = Column(Text, nullable=True)
    unlinked_at = Column(DateTime(timezone=True), nullable=True)
    unlinked_by = Column(String(36), nullable=True)
    unlink_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


# ---------------------------------------------------------------------------
# Packs
# ---------------------------------------------------------------------------

class AuditPack(Base):
    """Generated PDF bundle of obligations and evidence."""

    __tablename__ = "audit_packs"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="SET NULL"), nullable=True, index=True)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="SET NULL"), nullable=True)
    pack_type = Column(SQLEnum(PackType), nullable=False)
    title = Column(String(255), nullable=False)
    status = Column(SQLEnum(PackStatus), default=PackStatus.GENERATING, nullable=False)
    date_range_start = Column(Date, nullable=True)
    date_range_end = Column(Date, nullable=True)
    filters = Column(JSON, nullable=True)
    recipient_type = Column(String(30), default="INTERNAL", nullable=False)
    recipient_name = Column(String(255), nullable=True)
    purpose = Column(Text, nullable=True)
    storage_path = Column(String(512), nullable=True)
    file_size_bytes = Column(Integer, nullable=True)
    content_hash = Column(String(64), nullable=True)
    verification_generated_at = Column(DateTime(timezone=True), nullable=True)
    signatures = Column(JSON, nullable=True)
    total_obligations = Column(Integer, default=0, nullable=False)
    total_evidence = Column(Integer, default=0, nullable=False)
    compliance_score = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)
    generated_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    generated_at = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class PackDistribution(Base):
    """Email or shared-link distribution of a pack."""

    __tablename__ = "pack_distributions"

    id = Column(String(36), primary_key=True, default=_uuid)
    pack_id = Column(String(36), ForeignKey("audit_packs.id", ondelete="CASCADE"), nullable=False, index=True)
    distribution_method = Column(String(20), nullable=False)  # EMAIL, SHARED_LINK
    distributed_to = Column(String(255), nullable=True)
    shared_link_token = Column(String(128), nullable=True, unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    view_count = Column(Integer, default=0, nullable=False)
    distributed_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

class ReportConfig(Base):
    """Saved custom report definition."""

    __tablename__ = "report_configs"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    data_type = Column(String(30), nullable=False)
    columns = Column(JSON, nullable=False)
    filters = Column(JSON, nullable=True)
    date_range = Column(JSON, nullable=True)
    group_by = Column(String(100), nullable=True)
    sort_by = Column(JSON, nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class ComplianceScore(Base):
    """Daily compliance snapshot per site."""

    __tablename__ = "compliance_scores"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    compliance_date = Column(Date, nullable=False)
    compliance_status = Column(String(20), nullable=True)
    compliance_percentage = Column(Float, nullable=True)
    total_obligations = Column(Integer, default=0, nullable=False)
    completed_obligations = Column(Integer, default=0, nullable=False)
    overdue_obligations = Column(Integer, default=0, nullable=False)
    risk_level = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class NotificationTemplate(Base):
    """Versioned email template.  At most one version per code is active."""

    __tablename__ = "notification_templates"
    __table_args__ = (UniqueConstraint("template_code", "version", name="uq_template_code_version"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    template_code = Column(String(100), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    name = Column(String(255), nullable=True)
    subject_template = Column(Text, nullable=False)
    body_html_template = Column(Text, nullable=True)
    body_text_template = Column(Text, nullable=True)
    variables = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=False, nullable=False)
    effective_from = Column(DateTime(timezone=True), nullable=True)
    effective_until = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Notification(Base):
    """Outbound notification and its delivery state."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id = Column(String(36), nullable=True)
    recipient_email = Column(String(255), nullable=True)
    notification_type = Column(String(100), nullable=False)
    channel = Column(SQLEnum(NotificationChannel), default=NotificationChannel.EMAIL, nullable=False)
    priority = Column(String(20), default="NORMAL", nullable=False)  # LOW, NORMAL, HIGH, URGENT, CRITICAL
    subject = Column(String(500), nullable=True)
    body_text = Column(Text, nullable=True)
    body_html = Column(Text, nullable=True)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(36), nullable=True)
    status = Column(SQLEnum(NotificationStatus), default=NotificationStatus.PENDING, nullable=False)
    delivery_provider = Column(String(30), nullable=True)
    delivery_provider_id = Column(String(255), nullable=True, index=True)
    delivery_error = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    scheduled_for = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class AuditLog(Base):
    """Append-only record of user actions."""

    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), nullable=True, index=True)
    user_id = Column(String(36), nullable=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(36), nullable=False, index=True)
    action = Column(String(50), nullable=False)
    changes = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
