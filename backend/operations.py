"""
OpsDesk — Entity Operations

Business-level create/update/delete for every entity, plus the multi-entity
operations (ambassador + owning user, cascade-unassign on delete, client login
provisioning, dashboard configuration). Each operation runs inside exactly one
SnapshotStore.mutate call: related changes and their audit entries are
persisted together or not at all.

Validation and reference checks always run before the first collection is
touched, so a failed operation leaves no partial state and no audit entry.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from audit import AuditLogger
from change_detection import round_half_up
from config_schemas import (
    describe_validation_error, parse_commission_rule, validate_dashboard_config,
)
from entities import (
    Actor, AIMessage, AIThread, Ambassador, AmbassadorApplication, Appointment, AuditLog, Client,
    ClientUserLink, Commission, DashboardProject, Snapshot, SYSTEM_ACTOR, User,
    as_utc, normalize_email,
)
from errors import (
    DuplicateEmail, InvalidAmbassador, InvalidReference, InvalidTransition,
    NotFound, ValidationError,
)
from models import (
    AmbassadorStatus, ApplicationStatus, AppointmentStatus, AuditAction, ClientStatus,
    CommissionStatus, DashboardStatus, DataSourceType, EntityType, UserRole, utcnow,
)
from passwords import MIN_PASSWORD_LENGTH, hash_password, verify_password
from snapshot_store import SnapshotStore

logger = logging.getLogger("opsdesk.operations")


# ============================================================
# DASHBOARD STATE MACHINE
# ============================================================

DASHBOARD_TRANSITIONS = {
    DashboardStatus.NOT_STARTED: {DashboardStatus.CONFIGURING},
    DashboardStatus.CONFIGURING: {DashboardStatus.DRAFT},
    DashboardStatus.DRAFT: {DashboardStatus.READY},
    DashboardStatus.READY: set(),
}

# Statuses `reset` may return to configuring
RESETTABLE_STATUSES = {DashboardStatus.DRAFT, DashboardStatus.READY}

# Statuses in which a generated configuration may be (re)saved
CONFIGURABLE_STATUSES = {DashboardStatus.NOT_STARTED, DashboardStatus.CONFIGURING}


# ============================================================
# UPDATABLE FIELDS
# ============================================================

AMBASSADOR_FIELDS = {"name", "status", "commission_rule"}
CLIENT_FIELDS = {
    "name", "legal_name", "industry", "status", "contract_value_cents",
    "contract_currency", "contract_type", "contract_start", "contract_end",
    "billing_cycle", "onboarding_status", "notes_internal",
}
COMMISSION_FIELDS = {"client_id", "amount_cents", "status", "period_start", "period_end", "note"}
APPOINTMENT_FIELDS = {"client_id", "title", "start_at", "end_at", "status", "notes"}

MIN_APPLICANT_NAME_LENGTH = 2
MIN_APPLICATION_MESSAGE_LENGTH = 10


# ============================================================
# HELPERS
# ============================================================

def _build(model_cls, **data):
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {model_cls.__name__}: {describe_validation_error(e)}") from e


def _revise(entity, changes: Dict[str, Any]):
    """Validated copy of `entity` with `changes` applied"""
    data = entity.model_dump()
    data.update(changes)
    return _build(type(entity), **data)


def _check_fields(changes: Dict[str, Any], allowed: set, label: str) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Unsupported {label} fields: {', '.join(sorted(unknown))}")


def _check_password(password: Optional[str]) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def _check_email(email: Optional[str]) -> str:
    normalized = normalize_email(email or "")
    if "@" not in normalized or normalized.startswith("@") or normalized.endswith("@"):
        raise ValidationError(f"Invalid email address: {email!r}")
    return normalized


def _optional_text(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _check_window(start_at: datetime, end_at: datetime) -> None:
    if as_utc(end_at) <= as_utc(start_at):
        raise ValidationError("Appointment end_at must be after start_at")


def _check_period(period_start: date, period_end: date) -> None:
    if period_end < period_start:
        raise ValidationError("Commission period_end must not precede period_start")


def _enum(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Invalid {label}: {value!r}. Valid: {valid}")


@dataclass
class CommissionSummary:
    """Signed commission sums for one ambassador, in cents"""
    ambassador_id: str
    paid_cents: int = 0
    pending_cents: int = 0
    reversed_cents: int = 0
    count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================
# SERVICE
# ============================================================

class OpsService:
    """All reads and audited writes of the operations core"""

    def __init__(self, store: SnapshotStore, audit: Optional[AuditLogger] = None):
        self.store = store
        self.audit = audit or AuditLogger()

    # --------------------------------------------------------
    # Users
    # --------------------------------------------------------

    def _add_user(self, snapshot: Snapshot, actor: Actor, email: str, password_hash: str, role: UserRole) -> User:
        user = User(email=email, password_hash=password_hash, role=role)
        snapshot.users.append(user)
        self.audit.append(snapshot, actor, AuditAction.CREATE, EntityType.USER, user.id, None, user.to_dict())
        return user

    async def create_admin_user(self, email: str, password: str, *, actor: Actor = SYSTEM_ACTOR) -> User:
        email_norm = _check_email(email)
        _check_password(password)
        password_hash = hash_password(password)

        def transform(snapshot: Snapshot) -> User:
            if snapshot.find_user_by_email(email_norm):
                raise DuplicateEmail(email_norm)
            return self._add_user(snapshot, actor, email_norm, password_hash, UserRole.ADMIN)

        user = await self.store.mutate(transform)
        logger.info(f"Admin user created: {user.id}")
        return user

    async def ensure_admin_user(self, email: str, password: str) -> User:
        """Bootstrap an admin account unless the email is already registered"""
        existing = (await self.store.load()).find_user_by_email(email)
        if existing is not None:
            return existing
        return await self.create_admin_user(email, password)

    async def authenticate(self, email: str, password: str) -> Optional[User]:
        user = (await self.store.load()).find_user_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            return None
        return user

    async def get_user(self, user_id: str) -> Optional[User]:
        return (await self.store.load()).find("users", user_id)

    # --------------------------------------------------------
    # Ambassadors
    # --------------------------------------------------------

    async def create_ambassador(
        self,
        name: str,
        email: str,
        password: str,
        status: AmbassadorStatus = AmbassadorStatus.ACTIVE,
        commission_rule: Any = None,
        *,
        actor: Actor,
    ) -> Ambassador:
        email_norm = _check_email(email)
        _check_password(password)
        if not name or not name.strip():
            raise ValidationError("Ambassador name is required")
        status = _enum(AmbassadorStatus, status, "ambassador status")
        rule = parse_commission_rule(commission_rule) if commission_rule is not None else None
        password_hash = hash_password(password)

        def transform(snapshot: Snapshot) -> Ambassador:
            if snapshot.find_user_by_email(email_norm):
                raise DuplicateEmail(email_norm)
            user = self._add_user(snapshot, actor, email_norm, password_hash, UserRole.AMBASSADOR)
            fields = {"user_id": user.id, "name": name.strip(), "status": status}
            if rule is not None:
                fields["commission_rule"] = rule
            ambassador = Ambassador(**fields)
            snapshot.ambassadors.append(ambassador)
            self.audit.append(
                snapshot, actor, AuditAction.CREATE, EntityType.AMBASSADOR,
                ambassador.id, None, ambassador.to_dict(),
            )
            return ambassador

        ambassador = await self.store.mutate(transform)
        logger.info(f"Ambassador created: {ambassador.id} (user={ambassador.user_id})")
        return ambassador

    async def update_ambassador(self, ambassador_id: str, fields: Dict[str, Any], *, actor: Actor) -> Ambassador:
        changes = dict(fields)
        password = changes.pop("password", None)
        _check_fields(changes, AMBASSADOR_FIELDS, "ambassador")
        if not changes and password is None:
            raise ValidationError("No ambassador changes supplied")
        if "commission_rule" in changes:
            changes["commission_rule"] = parse_commission_rule(changes["commission_rule"]).model_dump()
        new_hash = None
        if password is not None:
            _check_password(password)
            new_hash = hash_password(password)

        def transform(snapshot: Snapshot) -> Ambassador:
            ambassador = snapshot.require("ambassadors", ambassador_id)
            updated = _revise(ambassador, {**changes, "updated_at": utcnow()}) if changes else ambassador
            owner = None
            if new_hash is not None:
                owner = snapshot.require("users", ambassador.user_id)

            if owner is not None:
                rotated = owner.model_copy(update={"password_hash": new_hash})
                snapshot.replace("users", rotated)
                self.audit.append(
                    snapshot, actor, AuditAction.UPDATE_PASSWORD, EntityType.USER,
                    owner.id, owner.to_dict(), rotated.to_dict(),
                )
            if changes:
                snapshot.replace("ambassadors", updated)
                self.audit.append(
                    snapshot, actor, AuditAction.UPDATE, EntityType.AMBASSADOR,
                    ambassador.id, ambassador.to_dict(), updated.to_dict(),
                )
            return updated

        return await self.store.mutate(transform)

    async def delete_ambassador(self, ambassador_id: str, *, actor: Actor) -> List[str]:
        """Delete an ambassador and its owning user; returns the unassigned client ids"""

        def transform(snapshot: Snapshot) -> List[str]:
            ambassador = snapshot.require("ambassadors", ambassador_id)
            owner = snapshot.find("users", ambassador.user_id)

            snapshot.remove("ambassadors", ambassador.id)
            if owner is not None:
                snapshot.remove("users", owner.id)
            # Cascade on clients is intentionally not audited per client
            unassigned = snapshot.cascade_unassign_ambassador(ambassador.id)

            self.audit.append(
                snapshot, actor, AuditAction.DELETE, EntityType.AMBASSADOR,
                ambassador.id, ambassador.to_dict(), None,
            )
            if owner is not None:
                self.audit.append(
                    snapshot, actor, AuditAction.DELETE, EntityType.USER,
                    owner.id, owner.to_dict(), None,
                )
            return unassigned

        unassigned = await self.store.mutate(transform)
        logger.info(f"Ambassador deleted: {ambassador_id} ({len(unassigned)} clients unassigned)")
        return unassigned

    async def get_ambassador(self, ambassador_id: str) -> Ambassador:
        return (await self.store.load()).require("ambassadors", ambassador_id)

    async def get_ambassador_for_user(self, user_id: str) -> Optional[Ambassador]:
        snapshot = await self.store.load()
        return next((a for a in snapshot.ambassadors if a.user_id == user_id), None)

    async def get_ambassador_profile(self, ambassador_id: str) -> Dict[str, Any]:
        snapshot = await self.store.load()
        return self._profile(snapshot, snapshot.require("ambassadors", ambassador_id))

    async def list_ambassador_profiles(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        snapshot = await self.store.load()
        ambassadors = snapshot.ambassadors
        if status is not None:
            wanted = _enum(AmbassadorStatus, status, "ambassador status")
            ambassadors = [a for a in ambassadors if a.status == wanted]
        return [self._profile(snapshot, a) for a in ambassadors]

    @staticmethod
    def _profile(snapshot: Snapshot, ambassador: Ambassador) -> Dict[str, Any]:
        owner = snapshot.find("users", ambassador.user_id)
        profile = ambassador.to_dict()
        profile["email"] = owner.email if owner else None
        profile["client_count"] = sum(1 for c in snapshot.clients if c.ambassador_id == ambassador.id)
        return profile

    # --------------------------------------------------------
    # Clients
    # --------------------------------------------------------

    @staticmethod
    def _require_active_ambassador(snapshot: Snapshot, ambassador_id: str) -> Ambassador:
        ambassador = snapshot.find("ambassadors", ambassador_id)
        if ambassador is None:
            raise InvalidAmbassador(f"Ambassador not found: {ambassador_id}")
        if ambassador.status != AmbassadorStatus.ACTIVE:
            raise InvalidAmbassador(f"Ambassador is not active: {ambassador_id}")
        return ambassador

    async def create_client(
        self,
        name: str,
        *,
        actor: Actor,
        ambassador_id: Optional[str] = None,
        login_email: Optional[str] = None,
        login_password: Optional[str] = None,
        **fields: Any,
    ) -> Client:
        _check_fields(fields, CLIENT_FIELDS - {"name"}, "client")
        if bool(login_email) != bool(login_password):
            raise ValidationError("login_email and login_password must be supplied together")
        if not name or not name.strip():
            raise ValidationError("Client name is required")
        client = _build(Client, name=name.strip(), ambassador_id=ambassador_id, **fields)
        email_norm = None
        password_hash = None
        if login_email:
            email_norm = _check_email(login_email)
            _check_password(login_password)
            password_hash = hash_password(login_password)

        def transform(snapshot: Snapshot) -> Client:
            if ambassador_id is not None:
                self._require_active_ambassador(snapshot, ambassador_id)
            if email_norm and snapshot.find_user_by_email(email_norm):
                raise DuplicateEmail(email_norm)

            login_user = None
            if email_norm:
                login_user = self._add_user(snapshot, actor, email_norm, password_hash, UserRole.CLIENT_USER)
            snapshot.clients.append(client)
            self.audit.append(snapshot, actor, AuditAction.CREATE, EntityType.CLIENT, client.id, None, client.to_dict())
            if login_user is not None:
                link = ClientUserLink(user_id=login_user.id, client_id=client.id)
                snapshot.client_users.append(link)
                self.audit.append(
                    snapshot, actor, AuditAction.CREATE, EntityType.CLIENT_USER,
                    link.id, None, link.to_dict(),
                )
            return client

        client = await self.store.mutate(transform)
        logger.info(f"Client created: {client.id}")
        return client

    async def update_client(self, client_id: str, fields: Dict[str, Any], *, actor: Actor) -> Client:
        if "ambassador_id" in fields:
            raise ValidationError("Use assign_client_to_ambassador to change a client's ambassador")
        _check_fields(fields, CLIENT_FIELDS, "client")
        if not fields:
            raise ValidationError("No client changes supplied")

        def transform(snapshot: Snapshot) -> Client:
            client = snapshot.require("clients", client_id)
            now = utcnow()
            updated = _revise(client, {**fields, "updated_at": now, "last_activity_at": now})
            snapshot.replace("clients", updated)
            self.audit.append(
                snapshot, actor, AuditAction.UPDATE, EntityType.CLIENT,
                client.id, client.to_dict(), updated.to_dict(),
            )
            return updated

        return await self.store.mutate(transform)

    async def assign_client_to_ambassador(
        self, client_id: str, ambassador_id: Optional[str], *, actor: Actor
    ) -> Client:
        """Assign (or, with None, unassign) a client's ambassador"""

        def transform(snapshot: Snapshot) -> Client:
            client = snapshot.require("clients", client_id)
            if ambassador_id is not None:
                self._require_active_ambassador(snapshot, ambassador_id)

            now = utcnow()
            updated = client.model_copy(update={
                "ambassador_id": ambassador_id,
                "updated_at": now,
                "last_activity_at": now,
            })
            snapshot.replace("clients", updated)
            action = AuditAction.ASSIGN_AMBASSADOR if ambassador_id else AuditAction.UNASSIGN_AMBASSADOR
            self.audit.append(
                snapshot, actor, action, EntityType.CLIENT,
                client.id, client.to_dict(), updated.to_dict(),
            )
            return updated

        return await self.store.mutate(transform)

    async def get_client(self, client_id: str) -> Client:
        return (await self.store.load()).require("clients", client_id)

    async def list_clients(self, ambassador_id: Optional[str] = None, status: Optional[str] = None) -> List[Client]:
        snapshot = await self.store.load()
        clients = list(snapshot.clients)
        if ambassador_id is not None:
            clients = [c for c in clients if c.ambassador_id == ambassador_id]
        if status is not None:
            wanted = _enum(ClientStatus, status, "client status")
            clients = [c for c in clients if c.status == wanted]
        return clients

    async def get_client_for_user(self, user_id: str) -> Optional[Client]:
        snapshot = await self.store.load()
        link = next((l for l in snapshot.client_users if l.user_id == user_id), None)
        if link is None:
            return None
        return snapshot.find("clients", link.client_id)

    # --------------------------------------------------------
    # Commissions
    # --------------------------------------------------------

    async def create_commission(
        self,
        ambassador_id: str,
        amount_cents: int,
        period_start: Any,
        period_end: Any,
        *,
        actor: Actor,
        client_id: Optional[str] = None,
        status: CommissionStatus = CommissionStatus.PENDING,
        note: Optional[str] = None,
    ) -> Commission:
        commission = _build(
            Commission,
            ambassador_id=ambassador_id,
            client_id=client_id,
            amount_cents=amount_cents,
            status=status,
            period_start=period_start,
            period_end=period_end,
            note=note,
        )
        _check_period(commission.period_start, commission.period_end)

        def transform(snapshot: Snapshot) -> Commission:
            if snapshot.find("ambassadors", ambassador_id) is None:
                raise InvalidReference(f"Ambassador not found: {ambassador_id}")
            if client_id is not None and snapshot.find("clients", client_id) is None:
                raise InvalidReference(f"Client not found: {client_id}")
            snapshot.commissions.append(commission)
            self.audit.append(
                snapshot, actor, AuditAction.CREATE, EntityType.COMMISSION,
                commission.id, None, commission.to_dict(),
            )
            return commission

        return await self.store.mutate(transform)

    async def update_commission(self, commission_id: str, fields: Dict[str, Any], *, actor: Actor) -> Commission:
        _check_fields(fields, COMMISSION_FIELDS, "commission")
        if not fields:
            raise ValidationError("No commission changes supplied")

        def transform(snapshot: Snapshot) -> Commission:
            commission = snapshot.require("commissions", commission_id)
            updated = _revise(commission, fields)
            _check_period(updated.period_start, updated.period_end)
            if updated.client_id is not None and updated.client_id != commission.client_id:
                if snapshot.find("clients", updated.client_id) is None:
                    raise InvalidReference(f"Client not found: {updated.client_id}")
            snapshot.replace("commissions", updated)
            self.audit.append(
                snapshot, actor, AuditAction.UPDATE, EntityType.COMMISSION,
                commission.id, commission.to_dict(), updated.to_dict(),
            )
            return updated

        return await self.store.mutate(transform)

    async def delete_commission(self, commission_id: str, *, actor: Actor) -> None:
        def transform(snapshot: Snapshot) -> None:
            commission = snapshot.require("commissions", commission_id)
            snapshot.remove("commissions", commission.id)
            self.audit.append(
                snapshot, actor, AuditAction.DELETE, EntityType.COMMISSION,
                commission.id, commission.to_dict(), None,
            )

        await self.store.mutate(transform)

    async def list_commissions(
        self,
        ambassador_id: Optional[str] = None,
        client_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Commission]:
        snapshot = await self.store.load()
        items = list(snapshot.commissions)
        if ambassador_id is not None:
            items = [c for c in items if c.ambassador_id == ambassador_id]
        if client_id is not None:
            items = [c for c in items if c.client_id == client_id]
        if status is not None:
            wanted = _enum(CommissionStatus, status, "commission status")
            items = [c for c in items if c.status == wanted]
        return items

    async def commission_summary(self, ambassador_id: str) -> CommissionSummary:
        """Per-status signed sums; deductions can take a total below zero"""
        summary = CommissionSummary(ambassador_id=ambassador_id)
        for commission in await self.list_commissions(ambassador_id=ambassador_id):
            summary.count += 1
            if commission.status == CommissionStatus.PAID:
                summary.paid_cents += commission.amount_cents
            elif commission.status == CommissionStatus.PENDING:
                summary.pending_cents += commission.amount_cents
            else:
                summary.reversed_cents += commission.amount_cents
        return summary

    # --------------------------------------------------------
    # Appointments
    # --------------------------------------------------------

    async def create_appointment(
        self,
        ambassador_id: str,
        title: str,
        start_at: Any,
        end_at: Any,
        *,
        actor: Actor,
        client_id: Optional[str] = None,
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
        notes: Optional[str] = None,
    ) -> Appointment:
        appointment = _build(
            Appointment,
            ambassador_id=ambassador_id,
            client_id=client_id,
            title=title,
            start_at=start_at,
            end_at=end_at,
            status=status,
            notes=notes,
        )
        _check_window(appointment.start_at, appointment.end_at)
        if not appointment.title.strip():
            raise ValidationError("Appointment title is required")

        def transform(snapshot: Snapshot) -> Appointment:
            if snapshot.find("ambassadors", ambassador_id) is None:
                raise InvalidReference(f"Ambassador not found: {ambassador_id}")
            if client_id is not None and snapshot.find("clients", client_id) is None:
                raise InvalidReference(f"Client not found: {client_id}")
            snapshot.appointments.append(appointment)
            self.audit.append(
                snapshot, actor, AuditAction.CREATE, EntityType.APPOINTMENT,
                appointment.id, None, appointment.to_dict(),
            )
            return appointment

        return await self.store.mutate(transform)

    async def update_appointment(self, appointment_id: str, fields: Dict[str, Any], *, actor: Actor) -> Appointment:
        _check_fields(fields, APPOINTMENT_FIELDS, "appointment")
        if not fields:
            raise ValidationError("No appointment changes supplied")

        def transform(snapshot: Snapshot) -> Appointment:
            appointment = snapshot.require("appointments", appointment_id)
            updated = _revise(appointment, fields)
            _check_window(updated.start_at, updated.end_at)
            if updated.client_id is not None and updated.client_id != appointment.client_id:
                if snapshot.find("clients", updated.client_id) is None:
                    raise InvalidReference(f"Client not found: {updated.client_id}")
            snapshot.replace("appointments", updated)
            self.audit.append(
                snapshot, actor, AuditAction.UPDATE, EntityType.APPOINTMENT,
                appointment.id, appointment.to_dict(), updated.to_dict(),
            )
            return updated

        return await self.store.mutate(transform)

    async def delete_appointment(self, appointment_id: str, *, actor: Actor) -> None:
        def transform(snapshot: Snapshot) -> None:
            appointment = snapshot.require("appointments", appointment_id)
            snapshot.remove("appointments", appointment.id)
            self.audit.append(
                snapshot, actor, AuditAction.DELETE, EntityType.APPOINTMENT,
                appointment.id, appointment.to_dict(), None,
            )

        await self.store.mutate(transform)

    async def get_appointment(self, appointment_id: str) -> Appointment:
        return (await self.store.load()).require("appointments", appointment_id)

    async def list_appointments(
        self,
        ambassador_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Appointment]:
        """Appointments of one ambassador starting within [start, end], by start time"""
        snapshot = await self.store.load()
        items = [a for a in snapshot.appointments if a.ambassador_id == ambassador_id]
        if start is not None:
            items = [a for a in items if a.start_at >= as_utc(start)]
        if end is not None:
            items = [a for a in items if a.start_at <= as_utc(end)]
        return sorted(items, key=lambda a: a.start_at)

    # --------------------------------------------------------
    # Dashboard projects
    # --------------------------------------------------------

    @staticmethod
    def _require_project(snapshot: Snapshot, client_id: str) -> DashboardProject:
        project = snapshot.project_for_client(client_id)
        if project is None:
            raise NotFound("DashboardProject", client_id)
        return project

    async def get_dashboard_project(self, client_id: str) -> Optional[DashboardProject]:
        return (await self.store.load()).project_for_client(client_id)

    async def ensure_dashboard_project(self, client_id: str, *, actor: Actor) -> DashboardProject:
        """Return the client's project, creating an empty one if needed"""
        current = await self.get_dashboard_project(client_id)
        if current is not None:
            return current

        def transform(snapshot: Snapshot) -> DashboardProject:
            snapshot.require("clients", client_id)
            project = snapshot.project_for_client(client_id)
            if project is not None:
                return project
            project = DashboardProject(client_id=client_id)
            snapshot.dashboard_projects.append(project)
            self.audit.append(
                snapshot, actor, AuditAction.CREATE, EntityType.DASHBOARD_PROJECT,
                project.id, None, project.to_dict(),
            )
            return project

        return await self.store.mutate(transform)

    async def save_dashboard_config(
        self,
        client_id: str,
        config: Any,
        *,
        actor: Actor,
        template_key: Optional[str] = None,
        data_source_type: Optional[str] = None,
    ) -> DashboardProject:
        """Store a validated generated configuration and move to configuring"""
        validated = validate_dashboard_config(config)
        source_type = _enum(DataSourceType, data_source_type, "data source type") if data_source_type else None

        def transform(snapshot: Snapshot) -> DashboardProject:
            snapshot.require("clients", client_id)
            project = snapshot.project_for_client(client_id)
            if project is not None and project.dashboard_status not in CONFIGURABLE_STATUSES:
                raise InvalidTransition(
                    f"Dashboard is {project.dashboard_status.value}; reset it before saving a new configuration"
                )

            values = {
                "data_source_config": validated.source_config,
                "column_mapping": dict(validated.column_mapping),
                "kpi_rules": dict(validated.kpi_rules),
                "chart_config": dict(validated.chart_config),
                "warnings": list(validated.warnings),
                "dashboard_status": DashboardStatus.CONFIGURING,
                "updated_at": utcnow(),
            }
            if template_key:
                values["template_key"] = template_key
            if source_type is not None:
                values["data_source_type"] = source_type

            if project is None:
                created = DashboardProject(client_id=client_id, **values)
                snapshot.dashboard_projects.append(created)
                self.audit.append(
                    snapshot, actor, AuditAction.CREATE, EntityType.DASHBOARD_PROJECT,
                    created.id, None, created.to_dict(),
                )
                return created

            updated = project.model_copy(update=values)
            snapshot.replace("dashboard_projects", updated)
            self.audit.append(
                snapshot, actor, AuditAction.UPDATE, EntityType.DASHBOARD_PROJECT,
                project.id, project.to_dict(), updated.to_dict(),
            )
            return updated

        return await self.store.mutate(transform)

    async def advance_dashboard(self, client_id: str, target: Any, *, actor: Actor) -> DashboardProject:
        target = _enum(DashboardStatus, target, "dashboard status")

        def transform(snapshot: Snapshot) -> DashboardProject:
            project = self._require_project(snapshot, client_id)
            current = project.dashboard_status
            if target not in DASHBOARD_TRANSITIONS[current]:
                raise InvalidTransition(f"Cannot move dashboard from {current.value} to {target.value}")
            updated = project.model_copy(update={"dashboard_status": target, "updated_at": utcnow()})
            snapshot.replace("dashboard_projects", updated)
            self.audit.append(
                snapshot, actor, AuditAction.STATUS_CHANGE, EntityType.DASHBOARD_PROJECT,
                project.id, project.to_dict(), updated.to_dict(),
            )
            return updated

        return await self.store.mutate(transform)

    async def reset_dashboard(self, client_id: str, *, actor: Actor) -> DashboardProject:
        """Return a draft or ready dashboard to configuring"""

        def transform(snapshot: Snapshot) -> DashboardProject:
            project = self._require_project(snapshot, client_id)
            if project.dashboard_status not in RESETTABLE_STATUSES:
                raise InvalidTransition(f"Cannot reset a dashboard that is {project.dashboard_status.value}")
            updated = project.model_copy(update={
                "dashboard_status": DashboardStatus.CONFIGURING,
                "updated_at": utcnow(),
            })
            snapshot.replace("dashboard_projects", updated)
            self.audit.append(
                snapshot, actor, AuditAction.RESET, EntityType.DASHBOARD_PROJECT,
                project.id, project.to_dict(), updated.to_dict(),
            )
            return updated

        return await self.store.mutate(transform)

    # --------------------------------------------------------
    # AI conversation log
    # --------------------------------------------------------

    async def create_ai_thread(
        self, client_id: str, title: str, *, actor: Actor, project_id: Optional[str] = None
    ) -> AIThread:
        if not title or not title.strip():
            raise ValidationError("Thread title is required")

        def transform(snapshot: Snapshot) -> AIThread:
            snapshot.require("clients", client_id)
            thread = AIThread(client_id=client_id, title=title.strip(), project_id=project_id)
            snapshot.ai_threads.append(thread)
            self.audit.append(
                snapshot, actor, AuditAction.CREATE, EntityType.AI_THREAD,
                thread.id, None, thread.to_dict(),
            )
            return thread

        return await self.store.mutate(transform)

    async def add_ai_message(self, thread_id: str, role: Any, content: str, *, actor: Actor) -> AIMessage:
        if not content or not content.strip():
            raise ValidationError("Message content is required")
        message = _build(AIMessage, thread_id=thread_id, role=role, content=content)

        def transform(snapshot: Snapshot) -> AIMessage:
            thread = snapshot.require("ai_threads", thread_id)
            snapshot.ai_messages.append(message)
            snapshot.replace("ai_threads", thread.model_copy(update={"updated_at": message.created_at}))
            self.audit.append(
                snapshot, actor, AuditAction.CREATE, EntityType.AI_MESSAGE,
                message.id, None, message.to_dict(),
            )
            return message

        return await self.store.mutate(transform)

    async def list_ai_threads(self, client_id: str) -> List[AIThread]:
        snapshot = await self.store.load()
        threads = [t for t in snapshot.ai_threads if t.client_id == client_id]
        return sorted(threads, key=lambda t: t.updated_at, reverse=True)

    async def list_ai_messages(self, thread_id: str) -> List[AIMessage]:
        snapshot = await self.store.load()
        snapshot.require("ai_threads", thread_id)
        messages = [m for m in snapshot.ai_messages if m.thread_id == thread_id]
        return sorted(messages, key=lambda m: m.created_at)

    # --------------------------------------------------------
    # Ambassador applications
    # --------------------------------------------------------

    async def submit_ambassador_application(
        self,
        full_name: str,
        email: str,
        message: str,
        *,
        phone: Optional[str] = None,
        city_state: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> AmbassadorApplication:
        """Record an inbound application; always starts as `new`"""
        full_name = (full_name or "").strip()
        message = (message or "").strip()
        if len(full_name) < MIN_APPLICANT_NAME_LENGTH:
            raise ValidationError(f"Full name must be at least {MIN_APPLICANT_NAME_LENGTH} characters")
        if len(message) < MIN_APPLICATION_MESSAGE_LENGTH:
            raise ValidationError(f"Message must be at least {MIN_APPLICATION_MESSAGE_LENGTH} characters")
        application = _build(
            AmbassadorApplication,
            full_name=full_name,
            email=_check_email(email),
            message=message,
            phone=_optional_text(phone),
            city_state=_optional_text(city_state),
            ip_address=ip_address,
            user_agent=user_agent,
        )

        def transform(snapshot: Snapshot) -> AmbassadorApplication:
            snapshot.ambassador_applications.append(application)
            self.audit.append(
                snapshot, actor, AuditAction.CREATE, EntityType.AMBASSADOR_APPLICATION,
                application.id, None, application.to_dict(),
            )
            return application

        await self.store.mutate(transform)
        logger.info(f"Ambassador application received: {application.id}")
        return application

    async def update_ambassador_application_status(
        self, application_id: str, status: Any, *, actor: Actor, notes: Optional[str] = None
    ) -> AmbassadorApplication:
        """Move an application to `status`; `notes` replaces the internal notes when given"""
        target = _enum(ApplicationStatus, status, "application status")

        def transform(snapshot: Snapshot) -> AmbassadorApplication:
            current = snapshot.require("ambassador_applications", application_id)
            changes: Dict[str, Any] = {"status": target, "updated_at": utcnow()}
            if notes is not None:
                changes["notes_internal"] = notes
            updated = _revise(current, changes)
            snapshot.replace("ambassador_applications", updated)
            self.audit.append(
                snapshot, actor, AuditAction.STATUS_CHANGE, EntityType.AMBASSADOR_APPLICATION,
                updated.id, current.to_dict(), updated.to_dict(),
            )
            return updated

        return await self.store.mutate(transform)

    async def get_ambassador_application(self, application_id: str) -> AmbassadorApplication:
        return (await self.store.load()).require("ambassador_applications", application_id)

    async def list_ambassador_applications(
        self, status: Optional[str] = None, q: Optional[str] = None
    ) -> List[AmbassadorApplication]:
        """Newest first; `q` matches name, email or message, case-insensitively"""
        applications = (await self.store.load()).ambassador_applications
        if status is not None:
            wanted = _enum(ApplicationStatus, status, "application status")
            applications = [a for a in applications if a.status == wanted]
        if q and q.strip():
            needle = q.strip().lower()
            applications = [
                a for a in applications
                if needle in a.full_name.lower() or needle in a.email.lower() or needle in a.message.lower()
            ]
        return sorted(applications, key=lambda a: a.created_at, reverse=True)

    async def ambassador_application_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Day-over-day count of new applications and week-over-week intake"""
        now = as_utc(now) if now is not None else utcnow()
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        yesterday_start = today_start - timedelta(days=1)
        week_start = now - timedelta(days=7)
        previous_week_start = now - timedelta(days=14)

        applications = (await self.store.load()).ambassador_applications
        fresh = [a for a in applications if a.status == ApplicationStatus.NEW]
        new_today = sum(1 for a in fresh if a.created_at >= today_start)
        new_yesterday = sum(1 for a in fresh if yesterday_start <= a.created_at < today_start)
        last_7 = sum(1 for a in applications if a.created_at >= week_start)
        previous_7 = sum(1 for a in applications if previous_week_start <= a.created_at < week_start)

        if previous_7 == 0:
            weekly_percent = 100 if last_7 > 0 else 0
        else:
            weekly_percent = round_half_up((last_7 - previous_7) / previous_7 * 100)

        return {
            "new_today": new_today,
            "new_yesterday": new_yesterday,
            "delta_today": new_today - new_yesterday,
            "total_last_7_days": last_7,
            "total_prev_7_days": previous_7,
            "delta_weekly": last_7 - previous_7,
            "delta_weekly_percent": weekly_percent,
            "total_new": len(fresh),
        }

    # --------------------------------------------------------
    # Read models
    # --------------------------------------------------------

    async def list_audit_logs(self, limit: int = 100, **filters: Any) -> List[AuditLog]:
        return self.audit.entries(await self.store.load(), limit=limit, **filters)

    async def admin_stats(self) -> Dict[str, Any]:
        snapshot = await self.store.load()
        commissions = snapshot.commissions
        return {
            "total_ambassadors": sum(1 for a in snapshot.ambassadors if a.status == AmbassadorStatus.ACTIVE),
            "total_clients": sum(1 for c in snapshot.clients if c.status == ClientStatus.ACTIVE),
            "unassigned_clients": sum(1 for c in snapshot.clients if c.ambassador_id is None),
            "pending_commissions_cents": sum(c.amount_cents for c in commissions if c.status == CommissionStatus.PENDING),
            "paid_commissions_cents": sum(c.amount_cents for c in commissions if c.status == CommissionStatus.PAID),
            "audit_entries": len(snapshot.audit_logs),
        }

    async def ambassador_dashboard(self, ambassador_id: str) -> Dict[str, Any]:
        """KPIs and recent activity for one ambassador"""
        snapshot = await self.store.load()
        ambassador = snapshot.require("ambassadors", ambassador_id)
        clients = [c for c in snapshot.clients if c.ambassador_id == ambassador.id]
        summary = await self.commission_summary(ambassador.id)
        recent = [
            entry for entry in snapshot.audit_logs
            if entry.actor_user_id == ambassador.user_id
            or (entry.entity_type == EntityType.AMBASSADOR.value and entry.entity_id == ambassador.id)
        ][:10]
        return {
            "ambassador_id": ambassador.id,
            "kpis": {
                "active_clients": sum(1 for c in clients if c.status == ClientStatus.ACTIVE),
                "total_clients": len(clients),
                "paid_commissions_cents": summary.paid_cents,
                "pending_commissions_cents": summary.pending_cents,
            },
            "recent_activity": [
                {
                    "id": entry.id,
                    "message": f"{entry.action.value} - {entry.entity_type}",
                    "created_at": entry.created_at.isoformat(),
                }
                for entry in recent
            ],
        }
