# models.py — Persistence model and shared enums for OpsDesk
# - The whole entity graph lives in one snapshot document (one row)
# - The row carries a revision counter bumped on every write
# - Domain enums shared by entities, operations and routers

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Column, String, DateTime, Integer, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    ADMIN = "admin"
    AMBASSADOR = "ambassador"
    CLIENT_USER = "client_user"


class AmbassadorStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ClientStatus(str, PyEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class OnboardingStatus(str, PyEnum):
    NEW = "new"
    ONBOARDING = "onboarding"
    LIVE = "live"
    PAUSED = "paused"


class ContractType(str, PyEnum):
    MONTHLY = "monthly"
    ONE_TIME = "one_time"


class BillingCycle(str, PyEnum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class CommissionStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    REVERSED = "reversed"


class AppointmentStatus(str, PyEnum):
    SCHEDULED = "scheduled"
    DONE = "done"
    CANCELLED = "cancelled"


class ApplicationStatus(str, PyEnum):
    NEW = "new"
    CONTACTED = "contacted"
    APPROVED = "approved"
    REJECTED = "rejected"
    EMAIL_FAILED = "email_failed"


class DashboardStatus(str, PyEnum):
    NOT_STARTED = "not_started"
    CONFIGURING = "configuring"
    DRAFT = "draft"
    READY = "ready"


class DataSourceType(str, PyEnum):
    GOOGLE_SHEETS = "google_sheets"
    CSV = "csv"
    API = "api"
    MANUAL = "manual"


class MessageRole(str, PyEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class AuditAction(str, PyEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    UPDATE_PASSWORD = "UPDATE_PASSWORD"
    ASSIGN_AMBASSADOR = "ASSIGN_AMBASSADOR"
    UNASSIGN_AMBASSADOR = "UNASSIGN_AMBASSADOR"
    STATUS_CHANGE = "STATUS_CHANGE"
    RESET = "RESET"


class EntityType(str, PyEnum):
    USER = "user"
    AMBASSADOR = "ambassador"
    CLIENT = "client"
    COMMISSION = "commission"
    APPOINTMENT = "appointment"
    DASHBOARD_PROJECT = "dashboard_project"
    AI_THREAD = "ai_thread"
    AI_MESSAGE = "ai_message"
    CLIENT_USER = "client_user"
    AMBASSADOR_APPLICATION = "ambassador_application"


# ============================================================
# SNAPSHOT DOCUMENTS
# ============================================================

class SnapshotDocument(Base):
    __tablename__ = "snapshot_documents"

    key = Column(String, primary_key=True)
    payload = Column(Text, nullable=False)
    revision = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
