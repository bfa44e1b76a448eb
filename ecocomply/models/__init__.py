"""Database and schema models for EcoComply."""
from ecocomply.models.database_models import (
    Company,
    User,
    Site,
    SiteAssignment,
    Document,
    Obligation,
    Schedule,
    Deadline,
    ReviewQueueItem,
    PatternCandidate,
    ExtractionLog,
    EvidenceItem,
    ObligationEvidenceLink,
    AuditPack,
    PackDistribution,
    ReportConfig,
    ComplianceScore,
    NotificationTemplate,
    Notification,
    AuditLog,
    UserRole,
    DocumentType,
    ExtractionStatus,
    ObligationCategory,
    Frequency,
    ReviewStatus,
    PackType,
    PackStatus,
    NotificationChannel,
    NotificationStatus,
)

__all__ = [
    # Database models
    "Company",
    "User",
    "Site",
    "SiteAssignment",
    "Document",
    "Obligation",
    "Schedule",
    "Deadline",
    "ReviewQueueItem",
    "PatternCandidate",
    "ExtractionLog",
    "EvidenceItem",
    "ObligationEvidenceLink",
    "AuditPack",
    "PackDistribution",
    "ReportConfig",
    "ComplianceScore",
    "NotificationTemplate",
    "Notification",
    "AuditLog",
    # Enums
    "UserRole",
    "DocumentType",
    "ExtractionStatus",
    "ObligationCategory",
    "Frequency",
    "ReviewStatus",
    "PackType",
    "PackStatus",
    "NotificationChannel",
    "NotificationStatus",
]
