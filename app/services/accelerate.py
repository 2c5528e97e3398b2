"""
Accelerate LMS integration.

Pages through trainers, students and enrollments with a one second gap
between API calls. Trainers become local users; students and enrollments
are kept as AccelerateMapping rows.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.utils import utcnow
from app.models.integration import AccelerateMapping, AccelerateSyncLog, SyncStatus
from app.models.user import User, Role, Department, UserStatus, RoleName
from app.services.integrations import IntegrationError, raise_for_api_error

logger = logging.getLogger(__name__)

SERVICE_NAME = "Accelerate API"
REQUEST_SPACING_SECONDS = 1.0
PAGE_SIZE = 100
SYNC_TYPES = ("trainers", "students", "enrollments", "all")


class AccelerateClient:
    """Async client for the Accelerate REST API."""

    def __init__(self):
        self.base_url = config.ACCELERATE_API_URL.rstrip("/")
        self.api_key = config.ACCELERATE_API_KEY
        self.organization_id = config.ACCELERATE_ORGANIZATION_ID
        self._last_request = 0.0
        self._lock = asyncio.Lock()

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.organization_id)

    async def _throttle(self) -> None:
        elapsed = time.monotonic() - self._last_request
        if elapsed < REQUEST_SPACING_SECONDS:
            await asyncio.sleep(REQUEST_SPACING_SECONDS - elapsed)
        self._last_request = time.monotonic()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.is_configured:
            raise IntegrationError(
                "Accelerate API is not configured. Set ACCELERATE_API_KEY and ACCELERATE_ORGANIZATION_ID.",
                status_code=400,
            )
        async with self._lock:
            await self._throttle()
            try:
                async with httpx.AsyncClient(base_url=self.base_url, timeout=30) as client:
                    response = await client.get(
                        path,
                        params=params,
                        headers={
                            "Authorization": f"Bearer {self.api_key}",
                            "X-Organization-ID": self.organization_id,
                        },
                    )
            except httpx.RequestError as e:
                raise IntegrationError(f"No response from Accelerate API: {e}") from e
        raise_for_api_error(response, SERVICE_NAME)
        return response.json()

    async def fetch_page(self, resource: str, page: int = 1, per_page: int = PAGE_SIZE) -> Dict[str, Any]:
        return await self._get(f"/{resource}", {"page": page, "per_page": per_page})

    async def fetch_all(self, resource: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            payload = await self.fetch_page(resource, page)
            items.extend(payload.get("data", []))
            total_pages = payload.get("pagination", {}).get("totalPages", 1)
            if page >= total_pages:
                return items
            page += 1

    async def test_connection(self) -> Dict[str, Any]:
        try:
            await self._get("/health")
        except IntegrationError as e:
            return {"success": False, "message": e.message}
        return {"success": True, "message": "Successfully connected to Accelerate API"}


accelerate_client = AccelerateClient()


async def _upsert_mapping(
    db: AsyncSession,
    entity_type: str,
    accelerate_id: str,
    data: Dict[str, Any],
    local_id: Optional[int] = None,
) -> bool:
    """Returns True when a new mapping was created."""
    mapping = await db.scalar(
        select(AccelerateMapping).where(
            AccelerateMapping.entity_type == entity_type,
            AccelerateMapping.accelerate_id == accelerate_id,
        )
    )
    if mapping is None:
        db.add(AccelerateMapping(
            entity_type=entity_type,
            accelerate_id=accelerate_id,
            local_id=local_id,
            data=data,
            last_synced_at=utcnow(),
        ))
        return True
    mapping.data = data
    mapping.last_synced_at = utcnow()
    if local_id is not None:
        mapping.local_id = local_id
    return False


async def sync_trainers(db: AsyncSession, sync_log: AccelerateSyncLog) -> None:
    trainers = await accelerate_client.fetch_all("trainers")
    trainer_role = await db.scalar(select(Role).where(Role.name == RoleName.TRAINER.value))

    for trainer in trainers:
        sync_log.records_processed += 1
        accelerate_id = str(trainer.get("id") or "")
        email = (trainer.get("email") or "").strip().lower()
        if not accelerate_id or not email:
            sync_log.records_failed += 1
            sync_log.errors = (sync_log.errors or []) + [
                {"trainer_id": accelerate_id, "error": "Trainer has no ID or email"}
            ]
            continue

        user = await db.scalar(select(User).where(User.accelerate_id == accelerate_id))
        if user is None:
            user = await db.scalar(select(User).where(User.email == email))

        name = " ".join(p for p in (trainer.get("firstName"), trainer.get("lastName")) if p) or email
        if user is None:
            user = User(
                email=email,
                full_name=name,
                department=Department.TRAINING,
                status=UserStatus.ACTIVE,
                accelerate_id=accelerate_id,
                roles=[trainer_role] if trainer_role else [],
            )
            db.add(user)
            await db.flush()
            sync_log.records_created += 1
        else:
            user.full_name = name
            user.accelerate_id = accelerate_id
            if trainer_role and not user.has_role(trainer_role.name):
                user.roles.append(trainer_role)
            sync_log.records_updated += 1

        await _upsert_mapping(db, "trainer", accelerate_id, trainer, local_id=user.id)


async def _sync_records(db: AsyncSession, sync_log: AccelerateSyncLog, resource: str, entity_type: str) -> None:
    for record in await accelerate_client.fetch_all(resource):
        sync_log.records_processed += 1
        accelerate_id = str(record.get("id") or "")
        if not accelerate_id:
            sync_log.records_failed += 1
            continue
        if await _upsert_mapping(db, entity_type, accelerate_id, record):
            sync_log.records_created += 1
        else:
            sync_log.records_updated += 1
        await db.flush()


async def run_sync(db: AsyncSession, sync_type: str = "all", triggered_by: Optional[User] = None) -> AccelerateSyncLog:
    if sync_type not in SYNC_TYPES:
        raise IntegrationError(f"Unknown sync type '{sync_type}'", status_code=400)

    sync_log = AccelerateSyncLog(
        sync_type=sync_type,
        status=SyncStatus.RUNNING,
        triggered_by_id=triggered_by.id if triggered_by else None,
    )
    db.add(sync_log)
    await db.commit()

    try:
        if sync_type in ("trainers", "all"):
            await sync_trainers(db, sync_log)
        if sync_type in ("students", "all"):
            await _sync_records(db, sync_log, "students", "student")
        if sync_type in ("enrollments", "all"):
            await _sync_records(db, sync_log, "enrollments", "enrollment")
    except IntegrationError as e:
        await db.rollback()
        sync_log.status = SyncStatus.FAILED
        sync_log.errors = [{"error": e.message}]
        sync_log.completed_at = utcnow()
        db.add(sync_log)
        await db.commit()
        logger.error("Accelerate %s sync failed: %s", sync_type, e.message)
        raise

    sync_log.status = SyncStatus.PARTIAL if sync_log.records_failed else SyncStatus.SUCCESS
    sync_log.completed_at = utcnow()
    await db.commit()
    logger.info(
        "Accelerate %s sync finished: %d processed, %d created, %d updated, %d failed",
        sync_type, sync_log.records_processed, sync_log.records_created,
        sync_log.records_updated, sync_log.records_failed,
    )
    return sync_log


async def sync_stats(db: AsyncSession) -> Dict[str, Any]:
    counts = dict((await db.execute(
        select(AccelerateMapping.entity_type, func.count()).group_by(AccelerateMapping.entity_type)
    )).all())
    last = await db.scalar(
        select(AccelerateSyncLog).order_by(AccelerateSyncLog.id.desc()).limit(1)
    )
    return {
        "trainers": counts.get("trainer", 0),
        "students": counts.get("student", 0),
        "enrollments": counts.get("enrollment", 0),
        "last_sync_at": last.completed_at if last else None,
        "last_sync_status": last.status.value if last else None,
    }
