"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

All tables as defined in ecocomply/models/database_models.py:
companies, users, sites, documents, site_assignments, obligations,
schedules, deadlines, review_queue_items, pattern_candidates,
extraction_logs, evidence_items, obligation_evidence_links, audit_packs,
pack_distributions, report_configs, compliance_scores,
notification_templates, notifications, audit_logs.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None

ENUMS = {
    "documenttype": ("ENVIRONMENTAL_PERMIT", "TRADE_EFFLUENT_CONSENT", "MCPD_REGISTRATION"),
    "extractionstatus": ("PENDING", "PROCESSING", "COMPLETED", "FAILED"),
    "obligationcategory": ("MONITORING", "REPORTING", "RECORD_KEEPING", "OPERATIONAL", "MAINTENANCE"),
    "frequency": (
        "DAILY", "WEEKLY", "MONTHLY", "QUARTERLY", "ANNUAL", "ONE_TIME", "CONTINUOUS", "EVENT_TRIGGERED",
    ),
    "reviewstatus": (
        "PENDING_REVIEW", "AUTO_CONFIRMED", "CONFIRMED", "EDITED", "REJECTED", "NOT_APPLICABLE",
    ),
    "packtype": (
        "AUDIT_PACK", "REGULATOR_INSPECTION", "TENDER_CLIENT_ASSURANCE", "BOARD_MULTI_SITE_RISK", "INSURER_BROKER",
    ),
    "packstatus": ("GENERATING", "COMPLETED", "FAILED", "DISTRIBUTED"),
    "notificationchannel": ("EMAIL", "SMS", "IN_APP"),
    "notificationstatus": (
        "PENDING", "QUEUED", "SENDING", "SENT", "DELIVERED", "BOUNCED", "COMPLAINED", "RETRYING", "FAILED", "CANCELLED",
    ),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _id() -> sa.Column:
    return sa.Column("id", sa.String(36), primary_key=True)


def _fk(name: str, target: str, ondelete: str = "CASCADE", nullable: bool = False, index: bool = True) -> sa.Column:
    return sa.Column(name, sa.String(36), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable, index=index)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(op.get_bind(), checkfirst=True)

    # ── companies ─────────────────────────────────────────────────────────
    op.create_table(
        "companies",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("company_number", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default=sa.true(), nullable=False),
        _created_at(),
        _updated_at(),
    )

    # ── users ─────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        _id(),
        _fk("company_id", "companies.id"),
        sa.Column("email", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("roles", sa.JSON, nullable=False),
        sa.Column("is_active", sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column("settings", sa.JSON, nullable=True),
        _created_at(),
        _updated_at(),
    )

    # ── sites ─────────────────────────────────────────────────────────────
    op.create_table(
        "sites",
        _id(),
        _fk("company_id", "companies.id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("site_name", sa.String(255), nullable=True),
        sa.Column("address", sa.Text, nullable=True),
        sa.Column("postcode", sa.String(20), nullable=True),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("site_type", sa.String(50), nullable=True),
        sa.Column("regulator", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), server_default="ACTIVE", nullable=False),
        _created_at(),
        _updated_at(),
    )

    # ── documents ─────────────────────────────────────────────────────────
    op.create_table(
        "documents",
        _id(),
        _fk("company_id", "companies.id"),
        _fk("site_id", "sites.id"),
        sa.Column("document_type", _enum("documenttype"), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("reference_number", sa.String(100), nullable=True),
        sa.Column("original_filename", sa.String(255), nullable=False),
        sa.Column("storage_path", sa.String(512), nullable=False),
        sa.Column("file_size_bytes", sa.Integer, server_default="0", nullable=False),
        sa.Column("mime_type", sa.String(100), nullable=True),
        sa.Column("page_count", sa.Integer, nullable=True),
        sa.Column("extracted_text", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), server_default="ACTIVE", nullable=False),
        sa.Column("extraction_status", _enum("extractionstatus"), server_default="PENDING", nullable=False),
        sa.Column("extraction_error", sa.Text, nullable=True),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        _fk("uploaded_by", "users.id", ondelete="SET NULL", nullable=True, index=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
    )

    # ── site_assignments ──────────────────────────────────────────────────
    op.create_table(
        "site_assignments",
        _id(),
        _fk("site_id", "sites.id"),
        _fk("document_id", "documents.id"),
        sa.Column("obligations_shared", sa.Boolean, server_default=sa.false(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("site_id", "document_id", name="uq_site_assignment"),
    )

    # ── obligations ───────────────────────────────────────────────────────
    op.create_table(
        "obligations",
        _id(),
        _fk("company_id", "companies.id"),
        _fk("site_id", "sites.id"),
        _fk("document_id", "documents.id"),
        sa.Column("condition_reference", sa.String(100), nullable=True),
        sa.Column("obligation_title", sa.String(255), nullable=False),
        sa.Column("obligation_description", sa.Text, nullable=True),
        sa.Column("original_text", sa.Text, nullable=True),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column("category", _enum("obligationcategory"), nullable=False),
        sa.Column("frequency", _enum("frequency"), nullable=True),
        sa.Column("deadline_date", sa.Date, nullable=True),
        sa.Column("status", sa.String(30), server_default="PENDING", nullable=False),
        sa.Column("review_status", _enum("reviewstatus"), server_default="PENDING_REVIEW", nullable=False),
        sa.Column("is_subjective", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("is_improvement", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("page_reference", sa.Integer, nullable=True),
        sa.Column("confidence_score", sa.Float, nullable=True),
        sa.Column("suggested_evidence_types", sa.JSON, nullable=True),
        _fk("assigned_to", "users.id", ondelete="SET NULL", nullable=True, index=False),
        sa.Column("version_number", sa.Integer, server_default="1", nullable=False),
        sa.Column("version_history", sa.JSON, nullable=True),
        sa.Column("review_notes", sa.Text, nullable=True),
        _fk("reviewed_by", "users.id", ondelete="SET NULL", nullable=True, index=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_obligations_deadline_date", "obligations", ["deadline_date"])

    # ── schedules / deadlines ─────────────────────────────────────────────
    op.create_table(
        "schedules",
        _id(),
        _fk("obligation_id", "obligations.id"),
        sa.Column("frequency", _enum("frequency"), nullable=False),
        sa.Column("base_date", sa.Date, nullable=False),
        sa.Column("next_due_date", sa.Date, nullable=True),
        sa.Column("is_active", sa.Boolean, server_default=sa.true(), nullable=False),
        _created_at(),
    )
    op.create_table(
        "deadlines",
        _id(),
        _fk("obligation_id", "obligations.id"),
        _fk("schedule_id", "schedules.id", ondelete="SET NULL", nullable=True, index=False),
        _fk("company_id", "companies.id"),
        _fk("site_id", "sites.id", index=False),
        sa.Column("due_date", sa.Date, nullable=False),
        sa.Column("compliance_period", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), server_default="PENDING", nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by", sa.String(36), nullable=True),
        sa.Column("is_late", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("sla_target_date", sa.Date, nullable=True),
        sa.Column("sla_breached_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )

    # ── extraction bookkeeping ────────────────────────────────────────────
    op.create_table(
        "review_queue_items",
        _id(),
        _fk("company_id", "companies.id"),
        _fk("site_id", "sites.id", index=False),
        _fk("document_id", "documents.id", index=False),
        _fk("obligation_id", "obligations.id", nullable=True, index=False),
        sa.Column("review_type", sa.String(50), nullable=False),
        sa.Column("is_blocking", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("priority", sa.Integer, server_default="0", nullable=False),
        sa.Column("review_status", sa.String(20), server_default="PENDING", nullable=False),
        sa.Column("review_action", sa.String(20), nullable=True),
        sa.Column("review_notes", sa.Text, nullable=True),
        _fk("reviewed_by", "users.id", ondelete="SET NULL", nullable=True, index=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_table(
        "pattern_candidates",
        _id(),
        _fk("company_id", "companies.id", nullable=True),
        sa.Column("pattern_text", sa.Text, nullable=False),
        sa.Column("category", _enum("obligationcategory"), nullable=True),
        sa.Column("sample_count", sa.Integer, server_default="1", nullable=False),
        sa.Column("match_rate", sa.Float, nullable=True),
        sa.Column("status", sa.String(20), server_default="PENDING_REVIEW", nullable=False),
        sa.Column("extraction_template", sa.JSON, nullable=True),
        sa.Column("matching", sa.JSON, nullable=True),
        sa.Column("regulator", sa.String(20), nullable=True),
        sa.Column("document_type", sa.String(50), nullable=True),
        sa.Column("source_obligation_ids", sa.JSON, nullable=True),
        sa.Column("usage_count", sa.Integer, server_default="0", nullable=False),
        _created_at(),
    )
    op.create_table(
        "extraction_logs",
        _id(),
        _fk("document_id", "documents.id"),
        _fk("company_id", "companies.id"),
        sa.Column("model_identifier", sa.String(50), nullable=False),
        sa.Column("input_tokens", sa.Integer, server_default="0", nullable=False),
        sa.Column("output_tokens", sa.Integer, server_default="0", nullable=False),
        sa.Column("estimated_cost", sa.Float, server_default="0", nullable=False),
        sa.Column("obligations_extracted", sa.Integer, server_default="0", nullable=False),
        sa.Column("rule_library_hits", sa.Integer, server_default="0", nullable=False),
        sa.Column("processing_time_ms", sa.Integer, nullable=True),
        sa.Column("errors", sa.JSON, nullable=True),
        _created_at(),
    )

    # ── evidence ──────────────────────────────────────────────────────────
    op.create_table(
        "evidence_items",
        _id(),
        _fk("company_id", "companies.id"),
        _fk("site_id", "sites.id"),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_type", sa.String(20), nullable=False),
        sa.Column("file_size", sa.Integer, server_default="0", nullable=False),
        sa.Column("mime_type", sa.String(100), nullable=True),
        sa.Column("storage_path", sa.String(512), nullable=False),
        sa.Column("file_hash", sa.String(64), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("evidence_type", sa.String(50), nullable=True),
        sa.Column("compliance_period", sa.String(20), nullable=True),
        sa.Column("validation_status", sa.String(20), server_default="PENDING", nullable=False),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("validated_by", sa.String(36), nullable=True),
        sa.Column("expiry_date", sa.Date, nullable=True),
        sa.Column("is_archived", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        _fk("uploaded_by", "users.id", ondelete="SET NULL", nullable=True, index=False),
        _created_at(),
        _updated_at(),
    )
    op.create_table(
        "obligation_evidence_links",
        _id(),
        _fk("obligation_id", "obligations.id"),
        _fk("evidence_id", "evidence_items.id"),
        sa.Column("compliance_period", sa.String(20), nullable=True),
        sa.Column("linked_by", sa.String(36), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("unlinked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unlinked_by", sa.String(36), nullable=True),
        sa.Column("unlink_reason", sa.Text, nullable=True),
        _created_at(),
    )

    # ── packs ─────────────────────────────────────────────────────────────
    op.create_table(
        "audit_packs",
        _id(),
        _fk("company_id", "companies.id"),
        _fk("site_id", "sites.id", ondelete="SET NULL", nullable=True),
        _fk("document_id", "documents.id", ondelete="SET NULL", nullable=True, index=False),
        sa.Column("pack_type", _enum("packtype"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("status", _enum("packstatus"), server_default="GENERATING", nullable=False),
        sa.Column("date_range_start", sa.Date, nullable=True),
        sa.Column("date_range_end", sa.Date, nullable=True),
        sa.Column("filters", sa.JSON, nullable=True),
        sa.Column("recipient_type", sa.String(30), server_default="INTERNAL", nullable=False),
        sa.Column("recipient_name", sa.String(255), nullable=True),
        sa.Column("purpose", sa.Text, nullable=True),
        sa.Column("storage_path", sa.String(512), nullable=True),
        sa.Column("file_size_bytes", sa.Integer, nullable=True),
        sa.Column("content_hash", sa.String(64), nullable=True),
        sa.Column("verification_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("signatures", sa.JSON, nullable=True),
        sa.Column("total_obligations", sa.Integer, server_default="0", nullable=False),
        sa.Column("total_evidence", sa.Integer, server_default="0", nullable=False),
        sa.Column("compliance_score", sa.Float, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        _fk("generated_by", "users.id", ondelete="SET NULL", nullable=True, index=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_table(
        "pack_distributions",
        _id(),
        _fk("pack_id", "audit_packs.id"),
        sa.Column("distribution_method", sa.String(20), nullable=False),
        sa.Column("distributed_to", sa.String(255), nullable=True),
        sa.Column("shared_link_token", sa.String(128), nullable=True, unique=True, index=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("view_count", sa.Integer, server_default="0", nullable=False),
        sa.Column("distributed_by", sa.String(36), nullable=True),
        _created_at(),
    )

    # ── reporting ─────────────────────────────────────────────────────────
    op.create_table(
        "report_configs",
        _id(),
        _fk("company_id", "companies.id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("data_type", sa.String(30), nullable=False),
        sa.Column("columns", sa.JSON, nullable=False),
        sa.Column("filters", sa.JSON, nullable=True),
        sa.Column("date_range", sa.JSON, nullable=True),
        sa.Column("group_by", sa.String(100), nullable=True),
        sa.Column("sort_by", sa.JSON, nullable=True),
        sa.Column("created_by", sa.String(36), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_table(
        "compliance_scores",
        _id(),
        _fk("company_id", "companies.id"),
        _fk("site_id", "sites.id"),
        sa.Column("compliance_date", sa.Date, nullable=False),
        sa.Column("compliance_status", sa.String(20), nullable=True),
        sa.Column("compliance_percentage", sa.Float, nullable=True),
        sa.Column("total_obligations", sa.Integer, server_default="0", nullable=False),
        sa.Column("completed_obligations", sa.Integer, server_default="0", nullable=False),
        sa.Column("overdue_obligations", sa.Integer, server_default="0", nullable=False),
        sa.Column("risk_level", sa.String(20), nullable=True),
        _created_at(),
    )

    # ── notifications ─────────────────────────────────────────────────────
    op.create_table(
        "notification_templates",
        _id(),
        sa.Column("template_code", sa.String(100), nullable=False, index=True),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("subject_template", sa.Text, nullable=False),
        sa.Column("body_html_template", sa.Text, nullable=True),
        sa.Column("body_text_template", sa.Text, nullable=True),
        sa.Column("variables", sa.JSON, nullable=True),
        sa.Column("is_active", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("effective_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("template_code", "version", name="uq_template_code_version"),
    )
    op.create_table(
        "notifications",
        _id(),
        _fk("user_id", "users.id", nullable=True),
        _fk("company_id", "companies.id"),
        sa.Column("site_id", sa.String(36), nullable=True),
        sa.Column("recipient_email", sa.String(255), nullable=True),
        sa.Column("notification_type", sa.String(100), nullable=False),
        sa.Column("channel", _enum("notificationchannel"), server_default="EMAIL", nullable=False),
        sa.Column("priority", sa.String(20), server_default="NORMAL", nullable=False),
        sa.Column("subject", sa.String(500), nullable=True),
        sa.Column("body_text", sa.Text, nullable=True),
        sa.Column("body_html", sa.Text, nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.String(36), nullable=True),
        sa.Column("status", _enum("notificationstatus"), server_default="PENDING", nullable=False),
        sa.Column("delivery_provider", sa.String(30), nullable=True),
        sa.Column("delivery_provider_id", sa.String(255), nullable=True, index=True),
        sa.Column("delivery_error", sa.Text, nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_notifications_status_scheduled", "notifications", ["status", "scheduled_for"])

    # ── audit_logs ────────────────────────────────────────────────────────
    op.create_table(
        "audit_logs",
        _id(),
        sa.Column("company_id", sa.String(36), nullable=True, index=True),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False, index=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("changes", sa.JSON, nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        _created_at(),
    )


def downgrade() -> None:
    for table in (
        "audit_logs",
        "notifications",
        "notification_templates",
        "compliance_scores",
        "report_configs",
        "pack_distributions",
        "audit_packs",
        "obligation_evidence_links",
        "evidence_items",
        "extraction_logs",
        "pattern_candidates",
        "review_queue_items",
        "deadlines",
        "schedules",
        "obligations",
        "site_assignments",
        "documents",
        "sites",
        "users",
        "companies",
    ):
        op.drop_table(table)

    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
