"""
OpsDesk — Entity records and the in-memory Snapshot

Every entity is a pydantic record identified by an opaque uuid. The Snapshot
holds one list per collection and is the unit that gets loaded, transformed
and persisted by the SnapshotStore. Relations between entities are plain ids;
lookups and cascades are explicit Snapshot methods.
"""

import hashlib
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config_schemas import (
    ChartSpec, CommissionRule, DEFAULT_COMMISSION_RULE, KpiRule, SourceConfig,
)
from errors import NotFound
from models import (
    AmbassadorStatus, ApplicationStatus, AppointmentStatus, AuditAction, BillingCycle,
    ClientStatus, CommissionStatus, ContractType, DashboardStatus, DataSourceType, MessageRole,
    OnboardingStatus, UserRole, new_uuid, utcnow,
)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class Actor(BaseModel):
    """Who performed a mutation, as supplied by the identity provider"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: str = UserRole.ADMIN.value


SYSTEM_ACTOR = Actor(user_id="system", role=UserRole.ADMIN.value)


class Entity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_uuid)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# ============================================================
# IDENTITY
# ============================================================

class User(Entity):
    email: str
    password_hash: str
    role: UserRole
    created_at: datetime = Field(default_factory=utcnow)

    def password_fingerprint(self) -> str:
        return hashlib.sha256(self.password_hash.encode()).hexdigest()[:16]

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"password_hash"})
        data["password_fingerprint"] = self.password_fingerprint()
        return data


class Ambassador(Entity):
    user_id: str
    name: str
    status: AmbassadorStatus = AmbassadorStatus.ACTIVE
    commission_rule: CommissionRule = Field(default_factory=lambda: DEFAULT_COMMISSION_RULE.model_copy())
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class ClientUserLink(Entity):
    user_id: str
    client_id: str
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================
# BUSINESS RECORDS
# ============================================================

class Client(Entity):
    name: str
    legal_name: Optional[str] = None
    industry: Optional[str] = None
    status: ClientStatus = ClientStatus.ACTIVE
    ambassador_id: Optional[str] = None
    contract_value_cents: Optional[int] = None
    contract_currency: str = "USD"
    contract_type: Optional[ContractType] = None
    contract_start: Optional[date] = None
    contract_end: Optional[date] = None
    billing_cycle: Optional[BillingCycle] = None
    onboarding_status: OnboardingStatus = OnboardingStatus.NEW
    notes_internal: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    last_activity_at: datetime = Field(default_factory=utcnow)


class Commission(Entity):
    ambassador_id: str
    client_id: Optional[str] = None
    # Sign encodes direction: positive credits, negative deductions/reversals
    amount_cents: int
    status: CommissionStatus = CommissionStatus.PENDING
    period_start: date
    period_end: date
    note: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("amount_cents", mode="before")
    @classmethod
    def reject_non_integer(cls, v: Any) -> Any:
        if isinstance(v, bool) or isinstance(v, float):
            raise ValueError("amount_cents must be an integer number of cents")
        return v


class Appointment(Entity):
    ambassador_id: str
    client_id: Optional[str] = None
    title: str
    start_at: datetime
    end_at: datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    notes: Optional[str] = None

    @field_validator("start_at", "end_at")
    @classmethod
    def normalize_tz(cls, v: datetime) -> datetime:
        return as_utc(v)


class DashboardProject(Entity):
    client_id: str
    template_key: str = "custom"
    data_source_type: DataSourceType = DataSourceType.MANUAL
    data_source_config: SourceConfig = Field(default_factory=SourceConfig)
    column_mapping: Dict[str, str] = Field(default_factory=dict)
    kpi_rules: Dict[str, KpiRule] = Field(default_factory=dict)
    chart_config: Dict[str, ChartSpec] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
    dashboard_status: DashboardStatus = DashboardStatus.NOT_STARTED
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AmbassadorApplication(Entity):
    """Inbound request to join the ambassador programme"""
    full_name: str
    email: str
    phone: Optional[str] = None
    city_state: Optional[str] = None
    message: str
    status: ApplicationStatus = ApplicationStatus.NEW
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    notes_internal: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def normalize_tz(cls, v: datetime) -> datetime:
        return as_utc(v)


class AIThread(Entity):
    client_id: str
    project_id: Optional[str] = None
    title: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AIMessage(Entity):
    thread_id: str
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=utcnow)


class AuditLog(Entity):
    """Immutable record of one mutation"""
    model_config = ConfigDict(extra="ignore", frozen=True)

    actor_user_id: str
    actor_role: Optional[str] = None
    action: AuditAction
    entity_type: str
    entity_id: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================
# SNAPSHOT
# ============================================================

COLLECTIONS = (
    "users", "ambassadors", "clients", "commissions", "appointments",
    "audit_logs", "dashboard_projects", "ai_threads", "ai_messages", "client_users",
    "ambassador_applications",
)

ENTITY_LABELS = {
    "users": "User",
    "ambassadors": "Ambassador",
    "clients": "Client",
    "commissions": "Commission",
    "appointments": "Appointment",
    "audit_logs": "AuditLog",
    "dashboard_projects": "DashboardProject",
    "ai_threads": "AIThread",
    "ai_messages": "AIMessage",
    "client_users": "ClientUserLink",
    "ambassador_applications": "AmbassadorApplication",
}


class Snapshot(BaseModel):
    """Complete in-memory representation of every entity collection.

    Collections absent from an older document default to empty lists.
    Unknown top-level keys are kept so a rewrite does not drop them.
    """
    model_config = ConfigDict(extra="allow")

    users: List[User] = Field(default_factory=list)
    ambassadors: List[Ambassador] = Field(default_factory=list)
    clients: List[Client] = Field(default_factory=list)
    commissions: List[Commission] = Field(default_factory=list)
    appointments: List[Appointment] = Field(default_factory=list)
    audit_logs: List[AuditLog] = Field(default_factory=list)
    dashboard_projects: List[DashboardProject] = Field(default_factory=list)
    ai_threads: List[AIThread] = Field(default_factory=list)
    ai_messages: List[AIMessage] = Field(default_factory=list)
    client_users: List[ClientUserLink] = Field(default_factory=list)
    ambassador_applications: List[AmbassadorApplication] = Field(default_factory=list)

    def collection(self, name: str) -> list:
        if name not in COLLECTIONS:
            raise KeyError(f"Unknown collection: {name}")
        return getattr(self, name)

    def counts(self) -> Dict[str, int]:
        return {name: len(self.collection(name)) for name in COLLECTIONS}

    # --- Lookup ---

    def find(self, name: str, entity_id: Optional[str]):
        if entity_id is None:
            return None
        return next((e for e in self.collection(name) if e.id == entity_id), None)

    def require(self, name: str, entity_id: str):
        entity = self.find(name, entity_id)
        if entity is None:
            raise NotFound(ENTITY_LABELS[name], entity_id)
        return entity

    def find_user_by_email(self, email: str) -> Optional[User]:
        wanted = normalize_email(email)
        return next((u for u in self.users if normalize_email(u.email) == wanted), None)

    def project_for_client(self, client_id: str) -> Optional[DashboardProject]:
        return next((p for p in self.dashboard_projects if p.client_id == client_id), None)

    # --- Writes ---

    def replace(self, name: str, entity) -> None:
        items = self.collection(name)
        for idx, existing in enumerate(items):
            if existing.id == entity.id:
                items[idx] = entity
                return
        raise NotFound(ENTITY_LABELS[name], entity.id)

    def remove(self, name: str, entity_id: str):
        items = self.collection(name)
        for idx, existing in enumerate(items):
            if existing.id == entity_id:
                return items.pop(idx)
        return None

    def cascade_unassign_ambassador(self, ambassador_id: str) -> List[str]:
        """Null out every client reference to an ambassador; returns client ids"""
        now = utcnow()
        touched = []
        for idx, client in enumerate(self.clients):
            if client.ambassador_id == ambassador_id:
                self.clients[idx] = client.model_copy(update={"ambassador_id": None, "updated_at": now})
                touched.append(client.id)
        return touched
