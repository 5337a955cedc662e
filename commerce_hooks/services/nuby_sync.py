"""
Nuby property sync: pull properties from the vendor and upsert them locally.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

import httpx
from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from commerce_hooks.integrations.nuby import NubyClient, instance_base_url
from commerce_hooks.models.entities import Integration, IntegrationSyncLog, Property
from commerce_hooks.services.encryption_service import decrypt_optional
from commerce_hooks.services.nuby_mapper import map_property

PROVIDER = "nuby"


@dataclass
class SyncResult:
    success: bool = False
    items_processed: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_failed: int = 0
    errors: List[str] = field(default_factory=list)


class SyncAborted(Exception):
    pass


async def _get_integration(db: AsyncSession, organization_id: str) -> Optional[Integration]:
    result = await db.execute(
        select(Integration)
        .where(Integration.organization_id == organization_id)
        .where(Integration.provider == PROVIDER)
    )
    return result.scalar_one_or_none()


def build_client(credentials: dict, transport: Optional[httpx.AsyncBaseTransport] = None) -> NubyClient:
    return NubyClient(
        instance=credentials.get("instance", ""),
        client_id=credentials.get("clientId", ""),
        secret_key=credentials.get("secretKey", ""),
        token=decrypt_optional(credentials.get("token")),
        transport=transport,
    )


async def _upsert(db: AsyncSession, organization_id: str, values: dict, result: SyncResult) -> None:
    existing = await db.execute(
        select(Property)
        .where(Property.organization_id == organization_id)
        .where(Property.external_id == values["external_id"])
        .limit(1)
    )
    prop = existing.scalar_one_or_none()

    if prop is not None:
        try:
            async with db.begin_nested():
                for key, value in values.items():
                    setattr(prop, key, value)
            result.items_updated += 1
        except Exception as exc:
            result.items_failed += 1
            result.errors.append(f"Error updating {values['external_code']}: {exc}")
        return

    try:
        async with db.begin_nested():
            db.add(Property(**values))
        result.items_created += 1
    except Exception as exc:
        result.items_failed += 1
        result.errors.append(f"Error creating {values['external_code']}: {exc}")


async def sync_nuby_properties(
    db: AsyncSession,
    organization_id: str,
    sync_type: str = "incremental",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SyncResult:
    """
    Pull properties from Nuby and upsert them by ``(organization, external_id)``.

    Per-property failures are counted and recorded without stopping the run.
    Failures before the loop (missing integration, bad credentials, vendor
    errors) mark the integration as ``error`` and are reported in
    ``SyncResult.errors``. Never raises.
    """
    result = SyncResult()
    integration = None
    sync_log = None

    try:
        integration = await _get_integration(db, organization_id)
        if integration is None:
            raise SyncAborted("Nuby integration not found")
        if integration.status != "connected":
            raise SyncAborted("Nuby integration is not connected")

        credentials = integration.credentials or {}
        client = build_client(credentials, transport)
        base_url = instance_base_url(credentials.get("instance", ""))

        sync_log = IntegrationSyncLog(
            integration_id=integration.id,
            organization_id=organization_id,
            sync_type=sync_type,
            status="started",
        )
        db.add(sync_log)
        await db.flush()

        logger.info(f"[Nuby Sync] Starting {sync_type} sync for organization {organization_id}")
        if sync_type == "full":
            properties = await client.sync_all_properties()
        else:
            properties = await client.get_updated_properties_since(datetime.utcnow() - timedelta(days=1))

        result.items_processed = len(properties)

        for nuby_property in properties:
            try:
                values = map_property(nuby_property, organization_id, base_url)
            except Exception as exc:
                result.items_failed += 1
                result.errors.append(f"Error processing property: {exc}")
                continue
            await _upsert(db, organization_id, values, result)

        now = datetime.utcnow()
        integration.last_sync_at = now
        integration.status = "connected" if result.items_failed == 0 else "error"
        integration.error_message = result.errors[0] if result.errors else None

        sync_log.status = "success" if result.items_failed == 0 else "error"
        sync_log.items_processed = result.items_processed
        sync_log.items_created = result.items_created
        sync_log.items_updated = result.items_updated
        sync_log.items_failed = result.items_failed
        sync_log.error_message = "; ".join(result.errors) if result.errors else None
        sync_log.error_details = {"errors": result.errors} if result.errors else None
        sync_log.completed_at = now
        await db.flush()

        result.success = result.items_failed == 0
        logger.info(
            f"[Nuby Sync] Done: processed={result.items_processed} created={result.items_created} "
            f"updated={result.items_updated} failed={result.items_failed}"
        )
        return result
    except Exception as exc:
        message = str(exc) or type(exc).__name__
        logger.error(f"[Nuby Sync] Sync failed for organization {organization_id}: {message}")
        result.errors.append(message)

        try:
            if isinstance(exc, SQLAlchemyError):
                integration, sync_log = await _reset_after_db_error(db, integration, sync_log)
            if integration is not None:
                integration.status = "error"
                integration.error_message = message
            if sync_log is not None:
                sync_log.status = "error"
                sync_log.error_message = message
                sync_log.completed_at = datetime.utcnow()
            await db.flush()
        except SQLAlchemyError as db_exc:
            logger.error(f"[Nuby Sync] Could not record sync failure: {db_exc}")
            await db.rollback()
        return result


async def _reset_after_db_error(db: AsyncSession, integration, sync_log):
    """Roll the failed transaction back and reattach fresh rows to record the error on."""
    integration_id = integration.id if integration is not None else None
    sync_type = sync_log.sync_type if sync_log is not None else None
    organization_id = integration.organization_id if integration is not None else None
    await db.rollback()

    if integration_id is None:
        return None, None
    integration = await db.get(Integration, integration_id)
    if integration is None or sync_type is None:
        return integration, None

    sync_log = IntegrationSyncLog(
        integration_id=integration_id,
        organization_id=organization_id,
        sync_type=sync_type,
        status="started",
    )
    db.add(sync_log)
    return integration, sync_log


def _log_dict(log: IntegrationSyncLog) -> dict:
    return {
        "id": log.id,
        "sync_type": log.sync_type,
        "status": log.status,
        "items_processed": log.items_processed,
        "items_created": log.items_created,
        "items_updated": log.items_updated,
        "items_failed": log.items_failed,
        "error_message": log.error_message,
        "started_at": log.started_at.isoformat() if log.started_at else None,
        "completed_at": log.completed_at.isoformat() if log.completed_at else None,
    }


async def get_last_sync_status(db: AsyncSession, organization_id: str) -> dict:
    integration = await _get_integration(db, organization_id)

    result = await db.execute(
        select(IntegrationSyncLog)
        .where(IntegrationSyncLog.organization_id == organization_id)
        .order_by(IntegrationSyncLog.started_at.desc())
        .limit(1)
    )
    last_log = result.scalar_one_or_none()

    return {
        "status": integration.status if integration else None,
        "last_sync_at": integration.last_sync_at if integration else None,
        "error_message": integration.error_message if integration else None,
        "last_log": _log_dict(last_log) if last_log else None,
    }
