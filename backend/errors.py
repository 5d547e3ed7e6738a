# errors.py — Domain error kinds raised by the entity store and operations
# Each error carries a human-readable message and a stable `kind` string.
# Routers translate kinds into HTTP status codes (see main.py).


class OpsError(Exception):
    """Base class for every failure outcome of the operations core"""

    kind = "OpsError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "detail": self.message}


class NotFound(OpsError):
    kind = "NotFound"

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} not found: {entity_id}")
        self.entity_type = entity_type
        self.entity_id = entity_id


class DuplicateEmail(OpsError):
    kind = "DuplicateEmail"

    def __init__(self, email: str):
        super().__init__(f"Email already registered: {email}")
        self.email = email


class InvalidReference(OpsError):
    kind = "InvalidReference"


class InvalidAmbassador(InvalidReference):
    """Assignment target is missing or not active"""


class ValidationError(OpsError):
    kind = "ValidationError"


class InvalidTransition(ValidationError):
    """Dashboard project state machine rejected a transition"""


class PersistenceError(OpsError):
    kind = "PersistenceError"


class ConcurrentModification(PersistenceError):
    """The stored document changed between load and write"""

    kind = "ConcurrentModification"
