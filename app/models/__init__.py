"""
RTO Compliance Hub database models.

This module exports all SQLAlchemy models for the application.
"""

from app.models.user import User, Role, Permission, Department, UserStatus, RoleName
from app.models.audit import AuditLog, AuditAction
from app.models.policy import Policy, PolicyVersion, PolicyStatus, Standard
from app.models.training import TrainingProduct, TrainingProductStatus, SOP
from app.models.staff import (
    Credential, CredentialType, CredentialStatus, PDItem, PDCategory, PDStatus
)
from app.models.feedback import Feedback, FeedbackType
from app.models.asset import Asset, AssetStatus, AssetService, AssetStateChange
from app.models.complaint import Complaint, ComplaintNote, ComplaintSource, ComplaintStatus
from app.models.onboarding import (
    OnboardingWorkflow,
    OnboardingTaskTemplate,
    OnboardingAssignment,
    OnboardingTask,
    AssignmentStatus,
    TaskStatus,
)
from app.models.notification import Notification, NotificationType, EmailLog, EmailStatus
from app.models.integration import (
    GoogleDriveConnection,
    GoogleDriveFolder,
    GoogleDriveFile,
    GoogleDriveSyncLog,
    XeroConnection,
    XeroSyncLog,
    AccelerateMapping,
    AccelerateSyncLog,
    SyncStatus,
)
from app.models.webhook import WebhookSubmission, WebhookStatus

__all__ = [
    # Users and RBAC
    "User",
    "Role",
    "Permission",
    "Department",
    "UserStatus",
    "RoleName",
    # Audit
    "AuditLog",
    "AuditAction",
    # Policies and standards
    "Policy",
    "PolicyVersion",
    "PolicyStatus",
    "Standard",
    # Training
    "TrainingProduct",
    "TrainingProductStatus",
    "SOP",
    # Staff compliance
    "Credential",
    "CredentialType",
    "CredentialStatus",
    "PDItem",
    "PDCategory",
    "PDStatus",
    # Feedback
    "Feedback",
    "FeedbackType",
    # Assets
    "Asset",
    "AssetStatus",
    "AssetService",
    "AssetStateChange",
    # Complaints
    "Complaint",
    "ComplaintNote",
    "ComplaintSource",
    "ComplaintStatus",
    # Onboarding
    "OnboardingWorkflow",
    "OnboardingTaskTemplate",
    "OnboardingAssignment",
    "OnboardingTask",
    "AssignmentStatus",
    "TaskStatus",
    # Notifications
    "Notification",
    "NotificationType",
    "EmailLog",
    "EmailStatus",
    # Integrations
    "GoogleDriveConnection",
    "GoogleDriveFolder",
    "GoogleDriveFile",
    "GoogleDriveSyncLog",
    "XeroConnection",
    "XeroSyncLog",
    "AccelerateMapping",
    "AccelerateSyncLog",
    "SyncStatus",
    # Webhooks
    "WebhookSubmission",
    "WebhookStatus",
]
