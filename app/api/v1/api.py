"""
API Router configuration.

Aggregates all v1 API endpoints with proper tagging and prefixes. Every
router except the webhooks shares the CSRF dependency, which only acts
on unsafe methods.
"""

from fastapi import APIRouter, Depends, Request, Response

from app.core.config import CSRF_TOKEN_EXPIRE_SECONDS, DEBUG
from app.core.csrf import CSRF_COOKIE_NAME, csrf_store, get_session_key, verify_csrf
from app.api.v1.endpoints import (
    accelerate,
    assets,
    audit_logs,
    auth,
    complaints,
    credentials,
    email,
    feedback,
    google_drive,
    onboarding,
    pd,
    policies,
    reports,
    sops,
    standards,
    training_products,
    users,
    webhooks,
    xero,
)

api_router = APIRouter(dependencies=[Depends(verify_csrf)])

# Third-party callbacks authenticate by signature, not by session
webhook_router = APIRouter()
webhook_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])


@api_router.get("/csrf-token", tags=["authentication"])
async def get_csrf_token(request: Request, response: Response):
    """Issue a CSRF token to echo in the X-CSRF-Token header."""
    token = csrf_store.issue(get_session_key(request))
    response.set_cookie(
        CSRF_COOKIE_NAME,
        token,
        max_age=CSRF_TOKEN_EXPIRE_SECONDS,
        httponly=False,
        secure=not DEBUG,
        samesite="strict",
    )
    return {"csrf_token": token}


# Authentication (no auth required for login/refresh/reset)
api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])

# Staff
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(credentials.router, prefix="/credentials", tags=["credentials"])
api_router.include_router(pd.router, prefix="/pd", tags=["professional development"])

# Policies and training
api_router.include_router(policies.router, prefix="/policies", tags=["policies"])
api_router.include_router(standards.router, prefix="/standards", tags=["standards"])
api_router.include_router(training_products.router, prefix="/training-products", tags=["training products"])
api_router.include_router(sops.router, prefix="/sops", tags=["sops"])

# Quality
api_router.include_router(feedback.router, prefix="/feedback", tags=["feedback"])
api_router.include_router(complaints.router, prefix="/complaints", tags=["complaints"])
api_router.include_router(assets.router, prefix="/assets", tags=["assets"])
api_router.include_router(onboarding.router, prefix="/onboarding", tags=["onboarding"])

# Reporting and notifications
api_router.include_router(reports.router, prefix="/reports", tags=["reports"])
api_router.include_router(email.router, prefix="/email", tags=["email"])
api_router.include_router(audit_logs.router, prefix="/audit-logs", tags=["audit logs"])

# Integrations
api_router.include_router(google_drive.router, prefix="/files/google-drive", tags=["google drive"])
api_router.include_router(xero.router, prefix="/sync/xero", tags=["xero"])
api_router.include_router(accelerate.router, prefix="/sync/accelerate", tags=["accelerate"])
