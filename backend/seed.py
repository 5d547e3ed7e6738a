# seed.py — Demo dataset written through the normal audited operations
import logging

from entities import SYSTEM_ACTOR
from models import ClientStatus
from operations import OpsService

logger = logging.getLogger("opsdesk.seed")

DEMO_ADMIN_EMAIL = "system@opsdesk.dev"

DEMO_AMBASSADORS = [
    {"key": "carlos", "name": "Carlos Rodriguez", "email": "carlos@demo.com", "rate": 0.10},
    {"key": "maria", "name": "Maria Garcia", "email": "maria@demo.com", "rate": 0.15},
]

DEMO_CLIENTS = [
    {"name": "Fabrica Textil Apex", "status": ClientStatus.ACTIVE, "ambassador": "carlos"},
    {"name": "Manufacturas del Norte", "status": ClientStatus.PAUSED, "ambassador": "carlos"},
    {"name": "Plasticos Industriales", "status": ClientStatus.ACTIVE, "ambassador": "maria"},
    {"name": "Cliente Nuevo Sin Asignar", "status": ClientStatus.ACTIVE, "ambassador": None},
]


async def seed_demo_data(ops: OpsService, password: str = "123456") -> bool:
    """Create the demo admin, ambassadors and clients; no-op unless the store has no users"""
    snapshot = await ops.store.load()
    if snapshot.users:
        logger.info("Store already has users, skipping demo seed")
        return False

    await ops.create_admin_user(DEMO_ADMIN_EMAIL, password)

    ambassador_ids = {}
    for spec in DEMO_AMBASSADORS:
        ambassador = await ops.create_ambassador(
            spec["name"],
            spec["email"],
            password,
            commission_rule={"type": "percentage", "rate": spec["rate"]},
            actor=SYSTEM_ACTOR,
        )
        ambassador_ids[spec["key"]] = ambassador.id

    for spec in DEMO_CLIENTS:
        owner = spec["ambassador"]
        await ops.create_client(
            spec["name"],
            actor=SYSTEM_ACTOR,
            ambassador_id=ambassador_ids[owner] if owner else None,
            status=spec["status"],
        )

    logger.info(
        f"Seeded demo data: 1 admin, {len(DEMO_AMBASSADORS)} ambassadors, {len(DEMO_CLIENTS)} clients"
    )
    return True
