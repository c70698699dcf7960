# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from relaynode.endpoints import FirstPartyEndpoint

if TYPE_CHECKING:
    from relaynode.context import Context

__all__ = ('run_maintenance',)


RENEWAL_HORIZON = timedelta(days=90)


async def run_maintenance(context: 'Context') -> list[FirstPartyEndpoint]:
    """
    Delete the expired certificates and renew the identity certificates that
    expire within the renewal horizon. Return the renewed endpoints.

    A failure to renew one endpoint is logged and does not prevent the
    other endpoints from being renewed.
    """
    deleted = context.certificate_store.delete_expired()
    if deleted:
        context.logger.info('expired_certificates_deleted', count=deleted)

    cutoff_date = datetime.now(UTC) + RENEWAL_HORIZON
    expiring_endpoints = [endpoint for endpoint in FirstPartyEndpoint.load_all(context) if endpoint.expiry_date <= cutoff_date]
    async with asyncio.TaskGroup() as task_group:
        tasks = [task_group.create_task(_renew(endpoint, context)) for endpoint in expiring_endpoints]
    return [renewed for task in tasks if (renewed := task.result()) is not None]


async def _renew(endpoint: FirstPartyEndpoint, context: 'Context') -> FirstPartyEndpoint | None:
    try:
        return await endpoint.renew_certificate(context)
    except Exception as exc:  # noqa: BLE001
        # failures stay confined to their endpoint
        context.logger.error('certificate_renewal_failed', endpoint_id=endpoint.id, error=str(exc), error_type=type(exc).__name__)
        return None
