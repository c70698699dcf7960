# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import TracebackType
from typing import TYPE_CHECKING, Self

from relaynode.endpoints import FirstPartyEndpoint, ThirdPartyEndpoint
from relaynode.exceptions import InvalidEndpointError, MissingKeyError
from relaynode.gateway import ParcelCollection, StreamingMode

if TYPE_CHECKING:
    from relaynode.context import Context

__all__ = 'IncomingMessage', 'MessageStream'  # noqa: RUF022


@dataclass(frozen=True)
class IncomingMessage:
    """
    A message received from a peer.

    The message stays queued in the gateway until it's acknowledged, so it
    will be delivered again unless ack() is called after it's processed.
    """

    type: str
    content: bytes
    sender: ThirdPartyEndpoint
    recipient: FirstPartyEndpoint
    _ack: Callable[[], Awaitable[None]] = field(repr=False, compare=False)

    async def ack(self) -> None:
        await self._ack()

    @classmethod
    def receive(cls, recipients: Sequence[FirstPartyEndpoint], context: 'Context') -> 'MessageStream':
        """Collect the messages for the recipients, keeping the connection to the gateway open"""
        if not recipients:
            raise InvalidEndpointError('At least one endpoint must be specified when collecting messages')
        return MessageStream(recipients, context)

    @classmethod
    def receive_by_ids(cls, recipient_ids: Sequence[str], context: 'Context') -> 'MessageStream':
        """Collect the messages for the first-party endpoints with the given ids"""
        recipients = []
        for recipient_id in recipient_ids:
            recipient = FirstPartyEndpoint.load(recipient_id, context)
            if recipient is None:
                raise InvalidEndpointError(f'Could not find the first-party endpoint {recipient_id}')
            recipients.append(recipient)
        return cls.receive(recipients, context)


class MessageStream:
    """
    An asynchronous stream of the messages collected from the gateway.

    Parcels are processed one at a time, in the order they are collected.
    Parcels that are malformed, invalid or that cannot be decrypted are
    acknowledged and dropped. A valid parcel from a peer that is not known
    locally ends the stream with InvalidEndpointError.

    Closing the stream closes the connection to the gateway. The stream is
    closed when leaving its async context or by calling aclose() explicitly,
    and it closes itself when the gateway ends the collection. Breaking out
    of a bare async for loop does not close it, so the connection stays open
    until aclose() is called. Use the stream as an async context manager to
    avoid that.
    """

    def __init__(self, recipients: Sequence[FirstPartyEndpoint], context: 'Context') -> None:
        self.recipients = {recipient.id: recipient for recipient in recipients}
        self.context = context
        self._collections = context.gateway.collect_parcels([recipient.signer for recipient in recipients], StreamingMode.KEEP_ALIVE)
        self._messages = self._process(self._collections)

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> IncomingMessage:
        return await anext(self._messages)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: TracebackType | None) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._messages.aclose()
        await self._close_collections()

    async def _close_collections(self) -> None:
        aclose = getattr(self._collections, 'aclose', None)
        if aclose is not None:
            await aclose()

    async def _process(self, collections: AsyncIterator[ParcelCollection]) -> AsyncGenerator[IncomingMessage, None]:
        try:
            async for collection in collections:
                if (message := await self._process_collection(collection)) is not None:
                    yield message
        finally:
            await self._close_collections()

    async def _process_collection(self, collection: ParcelCollection) -> IncomingMessage | None:
        try:
            parcel = collection.deserialize_and_validate_parcel()
        except ValueError as exc:
            return await self._drop(collection, reason=str(exc))
        if (recipient := self.recipients.get(parcel.recipient_address)) is None:
            return await self._drop(collection, reason=f'The parcel is addressed to an unknown recipient: {parcel.recipient_address}', parcel_id=parcel.id)
        try:
            service_message, sender_session_key = parcel.unwrap_payload(self.context.private_key_store)
        except (ValueError, MissingKeyError) as exc:
            return await self._drop(collection, reason=str(exc), parcel_id=parcel.id)

        sender = ThirdPartyEndpoint.load(parcel.sender_id, self.context)
        if sender is None:
            raise InvalidEndpointError(f'Could not find the third-party endpoint {parcel.sender_id}')
        # ordered by receipt time, since senders backdate their parcels
        self.context.public_key_store.save_session_key(sender_session_key, sender.id, datetime.now(UTC))

        return IncomingMessage(
            type=service_message.type,
            content=service_message.content,
            sender=sender,
            recipient=recipient,
            _ack=collection.ack,
        )

    async def _drop(self, collection: ParcelCollection, **details: str) -> None:
        self.context.logger.warning('invalid_parcel_received', **details)
        await collection.ack()
