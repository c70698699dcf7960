# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import unittest
from datetime import UTC, datetime, timedelta

import pytest
from helpers import FakeGateway, Peer, make_context

from relaynode.endpoints import FirstPartyEndpoint, PeerKind, ThirdPartyEndpoint
from relaynode.exceptions import InvalidEndpointError
from relaynode.gateway import GatewayError, StreamingMode
from relaynode.messages import CertificationPath, Parcel, ServiceMessage, SessionEnvelopedData, SessionKey, SessionKeyPair
from relaynode.messaging import IncomingMessage, OutgoingMessage, send_message


class TestOutgoingMessage(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self) -> None:
        self.gateway = FakeGateway()
        self.context = make_context(self.gateway)
        self.endpoint = await FirstPartyEndpoint.generate(self.context)
        self.peer = Peer()
        self.third_party_endpoint = ThirdPartyEndpoint.import_params(self.peer.connection_params, self.context)

    async def test_build(self) -> None:
        start = datetime.now(UTC).replace(microsecond=0)
        message = OutgoingMessage.build('text/plain', b'hello', self.endpoint, self.third_party_endpoint, self.context)
        end = datetime.now(UTC)

        parcel, service_message, _ = self.peer.open_parcel(message.parcel_serialized)
        assert parcel.id == message.parcel_id
        assert parcel.recipient_address == self.peer.id
        assert parcel.sender_certificate == self.endpoint.identity_certificate
        assert start - timedelta(minutes=5) <= parcel.creation_date <= end - timedelta(minutes=5)
        assert parcel.expiry_date == parcel.creation_date + timedelta(minutes=5, days=14)
        assert service_message == ServiceMessage('text/plain', b'hello')

    async def test_build_for_public_peer(self) -> None:
        peer = Peer(internet_address='peer.example.com')
        third_party_endpoint = ThirdPartyEndpoint.import_params(peer.connection_params, self.context)
        message = OutgoingMessage.build('text/plain', b'hello', self.endpoint, third_party_endpoint, self.context)
        parcel, _, _ = peer.open_parcel(message.parcel_serialized)
        assert parcel.recipient_address == 'peer.example.com'

    async def test_send(self) -> None:
        message = OutgoingMessage.build('text/plain', b'hello', self.endpoint, self.third_party_endpoint, self.context)
        await message.send()
        assert len(self.gateway.delivered) == 1
        parcel_serialized, signer = self.gateway.delivered[0]
        assert parcel_serialized == message.parcel_serialized
        assert signer.certificate == self.endpoint.identity_certificate
        assert signer.id == self.endpoint.id

    async def test_send_failure(self) -> None:
        message = OutgoingMessage.build('text/plain', b'hello', self.endpoint, self.third_party_endpoint, self.context)
        self.gateway.unavailable = True
        with pytest.raises(GatewayError, match='The gateway is unavailable'):
            await message.send()

    async def test_build_from_ids(self) -> None:
        message = OutgoingMessage.build_from_ids('text/plain', b'hello', self.endpoint.id, self.peer.id, self.context)
        parcel, service_message, _ = self.peer.open_parcel(message.parcel_serialized)
        assert parcel.sender_certificate == self.endpoint.identity_certificate
        assert service_message == ServiceMessage('text/plain', b'hello')
        assert message.recipient == self.third_party_endpoint

    async def test_build_from_ids_with_internet_address(self) -> None:
        peer = Peer(internet_address='peer.example.com')
        ThirdPartyEndpoint.import_params(peer.connection_params, self.context)
        message = OutgoingMessage.build_from_ids('text/plain', b'hello', self.endpoint.id, 'peer.example.com', self.context)
        parcel, _, _ = peer.open_parcel(message.parcel_serialized)
        assert parcel.recipient_address == 'peer.example.com'
        assert message.recipient.id == peer.id

    async def test_build_from_unknown_ids(self) -> None:
        stranger = Peer()
        with pytest.raises(InvalidEndpointError, match=f'Could not find the first-party endpoint {stranger.id}'):
            OutgoingMessage.build_from_ids('text/plain', b'hello', stranger.id, self.peer.id, self.context)
        with pytest.raises(InvalidEndpointError, match=f'Could not find the third-party endpoint {stranger.id}'):
            OutgoingMessage.build_from_ids('text/plain', b'hello', self.endpoint.id, stranger.id, self.context)
        with pytest.raises(InvalidEndpointError, match='Could not find the third-party endpoint unknown.example.com'):
            OutgoingMessage.build_from_ids('text/plain', b'hello', self.endpoint.id, 'unknown.example.com', self.context)
        assert self.gateway.delivered == []

    async def test_send_message(self) -> None:
        message = await send_message('text/plain', b'hello', self.endpoint.id, self.peer.id, self.context)
        assert len(self.gateway.delivered) == 1
        parcel_serialized, signer = self.gateway.delivered[0]
        assert parcel_serialized == message.parcel_serialized
        assert signer.id == self.endpoint.id
        _, service_message, _ = self.peer.open_parcel(parcel_serialized)
        assert service_message == ServiceMessage('text/plain', b'hello')


class TestIncomingMessage(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self) -> None:
        self.gateway = FakeGateway()
        self.context = make_context(self.gateway)
        self.endpoint = await FirstPartyEndpoint.generate(self.context)
        self.peer = Peer()
        self.third_party_endpoint = ThirdPartyEndpoint.import_params(self.peer.connection_params, self.context)
        self.authorization = self.endpoint.issue_authorization(self.third_party_endpoint, datetime.now(UTC) + timedelta(days=1), self.context)
        self.session_key = self._obtain_session_key()

    def _obtain_session_key(self) -> SessionKey:
        """Send a message to the peer, which learns the session key to use for replies"""
        outgoing_message = OutgoingMessage.build('text/plain', b'ping', self.endpoint, self.third_party_endpoint, self.context)
        _, _, session_key = self.peer.open_parcel(outgoing_message.parcel_serialized)
        return session_key

    def _make_parcel(self, content: bytes, *, peer: Peer | None = None, authorization: CertificationPath | None = None, session_key: SessionKey | None = None) -> bytes:
        return (peer or self.peer).make_parcel(
            self.endpoint,
            authorization or self.authorization,
            session_key or self.session_key,
            ServiceMessage('text/plain', content),
        )

    async def test_receive_without_recipients(self) -> None:
        with pytest.raises(InvalidEndpointError, match='At least one endpoint must be specified'):
            IncomingMessage.receive([], self.context)
        assert self.gateway.collections == []

    async def test_receive(self) -> None:
        parcel_serialized = self._make_parcel(b'pong')
        self.gateway.queue.append(parcel_serialized)

        async with IncomingMessage.receive([self.endpoint], self.context) as stream:
            message = await anext(stream)
            assert message.type == 'text/plain'
            assert message.content == b'pong'
            assert message.sender == self.third_party_endpoint
            assert message.recipient is self.endpoint
            assert self.gateway.queue == [parcel_serialized]
            await message.ack()
            assert self.gateway.queue == []
            assert self.gateway.acknowledged == [parcel_serialized]

        assert self.gateway.collections == [([self.endpoint.id], StreamingMode.KEEP_ALIVE)]
        assert self.gateway.closed_collections == 1

    async def test_receive_by_ids(self) -> None:
        self.gateway.queue.append(self._make_parcel(b'pong'))

        async with IncomingMessage.receive_by_ids([self.endpoint.id], self.context) as stream:
            message = await anext(stream)
            assert message.content == b'pong'
            assert message.recipient.id == self.endpoint.id
            assert message.sender == self.third_party_endpoint

        assert self.gateway.collections == [([self.endpoint.id], StreamingMode.KEEP_ALIVE)]

    async def test_receive_by_unknown_ids(self) -> None:
        stranger = Peer()
        with pytest.raises(InvalidEndpointError, match=f'Could not find the first-party endpoint {stranger.id}'):
            IncomingMessage.receive_by_ids([self.endpoint.id, stranger.id], self.context)
        with pytest.raises(InvalidEndpointError, match='At least one endpoint must be specified'):
            IncomingMessage.receive_by_ids([], self.context)
        assert self.gateway.collections == []

    async def test_messages_are_not_acknowledged_automatically(self) -> None:
        parcel_serialized = self._make_parcel(b'pong')
        self.gateway.queue.append(parcel_serialized)

        messages = [message async for message in IncomingMessage.receive([self.endpoint], self.context)]
        assert [message.content for message in messages] == [b'pong']
        assert self.gateway.queue == [parcel_serialized]
        assert self.gateway.acknowledged == []
        assert self.gateway.closed_collections == 1

    async def test_invalid_parcels_are_acknowledged_and_skipped(self) -> None:
        garbage = b'garbage'
        undecryptable = self._make_parcel(b'lost', session_key=SessionKeyPair.generate().session_key)
        unauthorized = self._make_parcel(b'forged', authorization=CertificationPath(self.gateway.ca.issue_node_certificate(self.peer.identity_key)))
        valid = self._make_parcel(b'pong')
        self.gateway.queue.extend([garbage, undecryptable, unauthorized, valid])

        messages = [message async for message in IncomingMessage.receive([self.endpoint], self.context)]
        assert [message.content for message in messages] == [b'pong']
        assert self.gateway.acknowledged == [garbage, undecryptable, unauthorized]
        assert self.gateway.queue == [valid]

    async def test_unknown_sender(self) -> None:
        stranger = Peer()
        stranger_endpoint = ThirdPartyEndpoint(stranger.id, stranger.identity_key, PeerKind.PRIVATE)
        authorization = self.endpoint.issue_authorization(stranger_endpoint, datetime.now(UTC) + timedelta(days=1), self.context)
        session_key_pair = SessionKeyPair.generate()
        self.context.private_key_store.save_session_key(session_key_pair.private_key, session_key_pair.session_key.key_id, self.endpoint.id)
        parcel_serialized = self._make_parcel(b'hello', peer=stranger, authorization=authorization, session_key=session_key_pair.session_key)
        self.gateway.queue.append(parcel_serialized)

        with pytest.raises(InvalidEndpointError, match=f'Could not find the third-party endpoint {stranger.id}'):
            async with IncomingMessage.receive([self.endpoint], self.context) as stream:
                await anext(stream)
        assert self.gateway.queue == [parcel_serialized]
        assert self.gateway.closed_collections == 1

    async def test_sender_session_key_is_stored(self) -> None:
        initial_session_key = self.third_party_endpoint.get_session_key(self.context)
        # the reply is dated before the peer was imported, as senders backdate their parcels
        parcel_serialized = self.peer.make_parcel(
            self.endpoint,
            self.authorization,
            self.session_key,
            ServiceMessage('text/plain', b'pong'),
            creation_date=datetime.now(UTC) - timedelta(minutes=5),
        )
        self.gateway.queue.append(parcel_serialized)

        async with IncomingMessage.receive([self.endpoint], self.context) as stream:
            await anext(stream)

        session_key = self.third_party_endpoint.get_session_key(self.context)
        assert session_key != initial_session_key

        # replies are encrypted with the newest session key of the peer
        outgoing_message = OutgoingMessage.build('text/plain', b'reply', self.endpoint, self.third_party_endpoint, self.context)
        parcel = Parcel.deserialize(outgoing_message.parcel_serialized)
        assert SessionEnvelopedData.from_wire(parcel.payload).recipient_key_id == session_key.key_id

    async def test_close_stream(self) -> None:
        self.gateway.queue.extend([self._make_parcel(b'first'), self._make_parcel(b'second')])

        stream = IncomingMessage.receive([self.endpoint], self.context)
        message = await anext(stream)
        assert message.content == b'first'
        await stream.aclose()
        assert self.gateway.closed_collections == 1
        with pytest.raises(StopAsyncIteration):
            await anext(stream)
        assert len(self.gateway.queue) == 2

    async def test_breaking_out_of_loop_leaves_stream_open(self) -> None:
        self.gateway.queue.extend([self._make_parcel(b'first'), self._make_parcel(b'second')])

        stream = IncomingMessage.receive([self.endpoint], self.context)
        async for message in stream:
            assert message.content == b'first'
            break
        assert self.gateway.closed_collections == 0
        await stream.aclose()
        assert self.gateway.closed_collections == 1
