# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Self

from relaynode.endpoints import FirstPartyEndpoint, ThirdPartyEndpoint
from relaynode.exceptions import InvalidEndpointError
from relaynode.messages import Parcel, ServiceMessage

if TYPE_CHECKING:
    from relaynode.context import Context

__all__ = 'OutgoingMessage', 'send_message'  # noqa: RUF022


CLOCK_DRIFT_TOLERANCE = timedelta(minutes=5)
MESSAGE_LIFETIME = timedelta(days=14)


@dataclass(frozen=True)
class OutgoingMessage:
    parcel_serialized: bytes
    parcel_id: str
    sender: FirstPartyEndpoint
    recipient: ThirdPartyEndpoint
    context: 'Context'

    @classmethod
    def build(cls, type: str, content: bytes, sender: FirstPartyEndpoint, recipient: ThirdPartyEndpoint, context: 'Context') -> Self:  # noqa: A002
        """
        Encrypt the service message for the recipient and seal it in a parcel
        signed by the sender.

        The parcel is dated a few minutes in the past, so that it's not
        rejected by recipients whose clock is slightly behind, and it expires
        two weeks from now.
        """
        channel = sender.get_channel(recipient, context)
        payload = channel.wrap_message_payload(ServiceMessage(type, content))
        now = datetime.now(UTC).replace(microsecond=0)
        creation_date = now - CLOCK_DRIFT_TOLERANCE
        expiry_date = now + MESSAGE_LIFETIME
        parcel = Parcel(
            recipient_address=channel.outbound_address,
            payload=payload,
            sender_certificate=channel.node_certificate,
            creation_date=creation_date,
            ttl=int((expiry_date - creation_date).total_seconds()),
        )
        return cls(parcel.serialize(channel.node_private_key), parcel.id, sender, recipient, context)

    async def send(self) -> None:
        """Deliver the parcel to the gateway. Transport errors are propagated to the caller."""
        await self.context.gateway.deliver_parcel(self.parcel_serialized, self.sender.signer)

    @classmethod
    def build_from_ids(cls, type: str, content: bytes, sender_id: str, recipient_ref: str, context: 'Context') -> Self:  # noqa: A002
        """
        Build a message between endpoints referenced by id.

        The recipient is looked up by its id first and then by its internet
        address, so public peers can be addressed by their domain name.
        """
        sender = FirstPartyEndpoint.load(sender_id, context)
        if sender is None:
            raise InvalidEndpointError(f'Could not find the first-party endpoint {sender_id}')
        recipient = ThirdPartyEndpoint.load(recipient_ref, context) or ThirdPartyEndpoint.load_by_address(recipient_ref, context)
        if recipient is None:
            raise InvalidEndpointError(f'Could not find the third-party endpoint {recipient_ref}')
        return cls.build(type, content, sender, recipient, context)


async def send_message(type: str, content: bytes, sender_id: str, recipient_ref: str, context: 'Context') -> OutgoingMessage:  # noqa: A002
    message = OutgoingMessage.build_from_ids(type, content, sender_id, recipient_ref, context)
    await message.send()
    return message
