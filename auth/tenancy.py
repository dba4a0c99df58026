"""
auth/tenancy.py -- Tenant eligibility gate.

Runs only after credentials verified, so unauthenticated callers never learn
whether a tenant is inactive or expired. The root tenant is exempt from both
checks.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from auth.errors import TenantExpired, TenantInactive
from auth.models import Tenant

logger = logging.getLogger("tenantauth.auth.tenancy")


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC, as the store writes them."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TenantGate:
    def __init__(self, root_tenant_id: str) -> None:
        self.root_tenant_id = root_tenant_id

    def check(self, tenant: Tenant, now: datetime | None = None) -> None:
        """Raise TenantInactive / TenantExpired; return None if the tenant may log in."""
        if tenant.id == self.root_tenant_id:
            return
        if not tenant.is_active:
            logger.info("Tenant %s rejected: inactive", tenant.id)
            raise TenantInactive()
        now = _as_utc(now or datetime.now(timezone.utc))
        valid_upto = _as_utc(tenant.valid_upto) if tenant.valid_upto is not None else None
        if valid_upto is not None and now > valid_upto:
            logger.info("Tenant %s rejected: validity ended %s", tenant.id, tenant.valid_upto.isoformat())
            raise TenantExpired()
