"""
Xero Payroll (AU) integration.

OAuth 2.0 connection management and a one-way employee sync that
creates or updates staff records.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.utils import utcnow
from app.models.integration import XeroConnection, XeroSyncLog, SyncStatus
from app.models.user import User, Department, UserStatus
from app.services.integrations import (
    IntegrationError,
    NotConnectedError,
    expiry_from,
    raise_for_api_error,
    token_needs_refresh,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "Xero"


def map_department(job_title: Optional[str]) -> Department:
    """Derive a department from a Xero job title."""
    if not job_title:
        return Department.SUPPORT
    title = job_title.lower()
    if "trainer" in title or "instructor" in title:
        return Department.TRAINING
    if "admin" in title or "manager" in title:
        return Department.ADMIN
    if "director" in title or "executive" in title:
        return Department.MANAGEMENT
    return Department.SUPPORT


class XeroClient:
    """Thin async client for the Xero identity and payroll APIs."""

    AUTH_URL = "https://login.xero.com/identity/connect/authorize"
    TOKEN_URL = "https://identity.xero.com/connect/token"
    CONNECTIONS_URL = "https://api.xero.com/connections"
    EMPLOYEES_URL = "https://api.xero.com/payroll.xro/1.0/Employees"

    def __init__(self):
        self.client_id = config.XERO_CLIENT_ID
        self.client_secret = config.XERO_CLIENT_SECRET
        self.redirect_uri = config.XERO_REDIRECT_URI

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorization_url(self, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": config.XERO_SCOPES,
            "state": state,
        }
        return f"{self.AUTH_URL}?{urlencode(params)}"

    async def _token_request(self, data: Dict[str, str]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=30) as client:
                response = await client.post(
                    self.TOKEN_URL,
                    data=data,
                    auth=(self.client_id, self.client_secret),
                )
        except httpx.RequestError as e:
            raise IntegrationError(f"No response from Xero: {e}") from e
        raise_for_api_error(response, SERVICE_NAME)
        return response.json()

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        return await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        })

    async def refresh(self, refresh_token: str) -> Dict[str, Any]:
        return await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    async def get_tenants(self, access_token: str) -> List[Dict[str, Any]]:
        try:
            async with httpx.AsyncClient(timeout=30) as client:
                response = await client.get(
                    self.CONNECTIONS_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.RequestError as e:
            raise IntegrationError(f"No response from Xero: {e}") from e
        raise_for_api_error(response, SERVICE_NAME)
        return response.json()

    async def fetch_employees(self, access_token: str, tenant_id: str) -> List[Dict[str, Any]]:
        try:
            async with httpx.AsyncClient(timeout=60) as client:
                response = await client.get(
                    self.EMPLOYEES_URL,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Xero-tenant-id": tenant_id,
                        "Accept": "application/json",
                    },
                )
        except httpx.RequestError as e:
            raise IntegrationError(f"No response from Xero: {e}") from e
        raise_for_api_error(response, SERVICE_NAME)
        return response.json().get("Employees", [])


xero_client = XeroClient()


async def get_active_connection(db: AsyncSession) -> Optional[XeroConnection]:
    result = await db.execute(
        select(XeroConnection)
        .where(XeroConnection.is_active.is_(True))
        .order_by(XeroConnection.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def connect(db: AsyncSession, code: str) -> XeroConnection:
    """Complete the OAuth callback and store the first tenant's connection."""
    tokens = await xero_client.exchange_code(code)
    tenants = await xero_client.get_tenants(tokens["access_token"])
    if not tenants:
        raise IntegrationError("No Xero organisation was authorised", status_code=400)

    await db.execute(update(XeroConnection).values(is_active=False))
    connection = XeroConnection(
        tenant_id=tenants[0]["tenantId"],
        tenant_name=tenants[0].get("tenantName"),
        access_token=tokens["access_token"],
        refresh_token=tokens.get("refresh_token"),
        token_expires_at=expiry_from(tokens.get("expires_in")),
        is_active=True,
    )
    db.add(connection)
    await db.commit()
    logger.info("Connected Xero tenant %s", connection.tenant_name or connection.tenant_id)
    return connection


async def ensure_access_token(db: AsyncSession, connection: XeroConnection) -> str:
    if token_needs_refresh(connection.token_expires_at):
        if not connection.refresh_token:
            raise IntegrationError("Xero token expired. Reconnect the integration.", status_code=400)
        tokens = await xero_client.refresh(connection.refresh_token)
        connection.access_token = tokens["access_token"]
        connection.refresh_token = tokens.get("refresh_token", connection.refresh_token)
        connection.token_expires_at = expiry_from(tokens.get("expires_in"))
        await db.commit()
        logger.info("Refreshed Xero access token")
    return connection.access_token


async def disconnect(db: AsyncSession) -> bool:
    connection = await get_active_connection(db)
    if connection is None:
        return False
    connection.is_active = False
    await db.commit()
    return True


async def test_connection(db: AsyncSession) -> Dict[str, Any]:
    connection = await get_active_connection(db)
    if connection is None:
        return {"success": False, "message": "Xero is not connected"}
    try:
        token = await ensure_access_token(db, connection)
        await xero_client.get_tenants(token)
    except IntegrationError as e:
        return {"success": False, "message": e.message}
    return {"success": True, "message": f"Connected to {connection.tenant_name or connection.tenant_id}"}


def _full_name(employee: Dict[str, Any]) -> str:
    return " ".join(p for p in (employee.get("FirstName"), employee.get("LastName")) if p).strip()


async def sync_employees(db: AsyncSession, triggered_by: Optional[User] = None) -> XeroSyncLog:
    """
    Pull payroll employees and upsert users.

    Users are matched by Xero employee ID, then by email. New users are
    created without a password.
    """
    connection = await get_active_connection(db)
    if connection is None:
        raise NotConnectedError(SERVICE_NAME)

    sync_log = XeroSyncLog(
        status=SyncStatus.RUNNING,
        triggered_by_id=triggered_by.id if triggered_by else None,
    )
    db.add(sync_log)
    await db.commit()

    try:
        token = await ensure_access_token(db, connection)
        employees = await xero_client.fetch_employees(token, connection.tenant_id)
    except IntegrationError as e:
        sync_log.status = SyncStatus.FAILED
        sync_log.errors = [{"error": e.message}]
        sync_log.completed_at = utcnow()
        await db.commit()
        logger.error("Xero sync failed: %s", e.message)
        raise

    errors = []
    seen_emails = set()
    for employee in employees:
        employee_id = employee.get("EmployeeID")
        email = (employee.get("Email") or "").strip().lower()
        sync_log.records_processed += 1

        if not employee_id or not email:
            sync_log.records_failed += 1
            errors.append({"employee_id": employee_id, "error": "Employee has no ID or email"})
            continue
        if email in seen_emails:
            sync_log.records_failed += 1
            errors.append({"employee_id": employee_id, "error": f"Duplicate email {email}"})
            continue
        seen_emails.add(email)

        user = await db.scalar(select(User).where(User.xero_employee_id == employee_id))
        if user is None:
            user = await db.scalar(select(User).where(User.email == email))

        name = _full_name(employee) or email
        department = map_department(employee.get("JobTitle"))
        if user is None:
            db.add(User(
                email=email,
                full_name=name,
                department=department,
                status=UserStatus.ACTIVE,
                xero_employee_id=employee_id,
            ))
            sync_log.records_created += 1
        else:
            user.full_name = name
            user.department = department
            user.xero_employee_id = employee_id
            sync_log.records_updated += 1

    if sync_log.records_failed and (sync_log.records_created or sync_log.records_updated):
        sync_log.status = SyncStatus.PARTIAL
    elif sync_log.records_failed:
        sync_log.status = SyncStatus.FAILED
    else:
        sync_log.status = SyncStatus.SUCCESS
    sync_log.errors = errors or None
    sync_log.completed_at = utcnow()
    connection.last_sync_at = sync_log.completed_at
    await db.commit()

    logger.info(
        "Xero sync finished: %d created, %d updated, %d failed",
        sync_log.records_created, sync_log.records_updated, sync_log.records_failed,
    )
    return sync_log
