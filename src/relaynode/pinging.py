# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import json
from base64 import b64encode
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

from relaynode.endpoints import FirstPartyEndpoint, ThirdPartyEndpoint
from relaynode.exceptions import InvalidEndpointError
from relaynode.messaging import IncomingMessage, OutgoingMessage
from relaynode.trust.x509 import serialize_certificate

if TYPE_CHECKING:
    from relaynode.context import Context

__all__ = 'DEFAULT_PUBLIC_ENDPOINT', 'PING_MESSAGE_TYPE', 'get_default_first_party_endpoint', 'get_default_third_party_endpoint', 'send_ping', 'collect_pong'  # noqa: RUF022


DEFAULT_PUBLIC_ENDPOINT = 'ping.awala.services'
PING_MESSAGE_TYPE = 'application/vnd.awala.ping-v1.ping'
PING_AUTHORIZATION_LIFETIME = timedelta(days=30)


async def get_default_first_party_endpoint(context: 'Context') -> FirstPartyEndpoint:
    """Return the active identity, registering a new one with the gateway if there is none"""
    endpoint = FirstPartyEndpoint.load_active(context)
    if endpoint is None:
        endpoint = await FirstPartyEndpoint.generate(context)
    return endpoint


def get_default_third_party_endpoint(context: 'Context', connection_params: bytes | None = None) -> ThirdPartyEndpoint:
    """
    Return the public ping endpoint.

    When the endpoint is not known yet, it is imported from the given
    connection parameters, which must belong to the ping endpoint.
    """
    endpoint = ThirdPartyEndpoint.load_by_address(DEFAULT_PUBLIC_ENDPOINT, context)
    if endpoint is not None:
        return endpoint
    if connection_params is None:
        raise InvalidEndpointError(f'Could not find the third-party endpoint {DEFAULT_PUBLIC_ENDPOINT}')
    endpoint = ThirdPartyEndpoint.import_params(connection_params, context)
    if endpoint.internet_address != DEFAULT_PUBLIC_ENDPOINT:
        raise InvalidEndpointError(f'The connection parameters are for {endpoint.internet_address or "a private endpoint"}, not {DEFAULT_PUBLIC_ENDPOINT}')
    return endpoint


async def send_ping(sender: FirstPartyEndpoint, recipient: ThirdPartyEndpoint, context: 'Context') -> str:
    """
    Send a ping to the recipient and return its id.

    The ping carries an authorization for the recipient to reply with a pong,
    valid for 30 days.
    """
    authorization = sender.issue_authorization(recipient, datetime.now(UTC) + PING_AUTHORIZATION_LIFETIME, context)
    ping_id = str(uuid4())
    content = {
        'id': ping_id,
        'pda': b64encode(serialize_certificate(authorization.leaf_certificate)).decode(),
        'pda_chain': [b64encode(serialize_certificate(certificate)).decode() for certificate in authorization.certificate_authorities],
    }
    message = OutgoingMessage.build(PING_MESSAGE_TYPE, json.dumps(content).encode(), sender, recipient, context)
    await message.send()
    context.logger.info('ping_sent', ping_id=ping_id, endpoint_id=sender.id, peer_id=recipient.id)
    return ping_id


async def collect_pong(ping_id: str, endpoint: FirstPartyEndpoint, context: 'Context') -> bool:
    """
    Wait for the pong that answers the given ping and acknowledge it.

    Other messages are left in the gateway. Return False if the collection
    ends before the pong arrives.
    """
    async with IncomingMessage.receive([endpoint], context) as stream:
        async for message in stream:
            if message.content == ping_id.encode():
                await message.ack()
                context.logger.info('pong_received', ping_id=ping_id, endpoint_id=endpoint.id)
                return True
    return False
