# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import os
from collections.abc import AsyncIterator, Sequence
from datetime import UTC, datetime, timedelta
from functools import partial

from relaynode.context import Context
from relaynode.database import Database
from relaynode.endpoints import FirstPartyEndpoint
from relaynode.gateway import GatewayError, ParcelCollection, Signer, StreamingMode
from relaynode.messages import (
    CertificationPath,
    NodeConnectionParams,
    Parcel,
    PrivateNodeRegistration,
    PrivateNodeRegistrationRequest,
    ServiceMessage,
    SessionEnvelopedData,
    SessionKey,
    SessionKeyPair,
)
from relaynode.trust import CA, KeyType, PublicKey, get_id_from_identity_key


class FakeGateway:
    """An in-process gateway that registers nodes and queues parcels until they are acknowledged"""

    internet_address = 'gateway.example.com'

    def __init__(self) -> None:
        self.ca = CA.new()
        self.certificate_expiry: datetime | None = None
        self.unavailable = False
        self.authorizations: dict[bytes, PublicKey] = {}
        self.pre_registrations: list[PublicKey] = []
        self.registrations: list[PrivateNodeRegistration] = []
        self.delivered: list[tuple[bytes, Signer]] = []
        self.queue: list[bytes] = []
        self.acknowledged: list[bytes] = []
        self.collections: list[tuple[list[str], StreamingMode]] = []
        self.closed_collections = 0

    @property
    def id(self) -> str:
        return self.ca.id

    async def pre_register_node(self, public_key: PublicKey) -> bytes:
        if self.unavailable:
            raise GatewayError('The gateway is unavailable')
        authorization = os.urandom(16)
        self.authorizations[authorization] = public_key
        self.pre_registrations.append(public_key)
        return authorization

    async def register_node(self, request_serialized: bytes) -> PrivateNodeRegistration:
        request = PrivateNodeRegistrationRequest.deserialize(request_serialized)
        if self.authorizations.pop(request.authorization, None) != request.public_key:
            raise GatewayError('The registration authorization is invalid')
        validity_end_date = self.certificate_expiry or datetime.now(UTC) + timedelta(days=180)
        certificate = self.ca.issue_node_certificate(request.public_key, validity_end_date=validity_end_date)
        registration = PrivateNodeRegistration(certificate, self.ca.certificate, self.internet_address)
        self.registrations.append(registration)
        return registration

    async def deliver_parcel(self, parcel_serialized: bytes, signer: Signer) -> None:
        if self.unavailable:
            raise GatewayError('The gateway is unavailable')
        self.delivered.append((parcel_serialized, signer))

    async def collect_parcels(self, signers: Sequence[Signer], mode: StreamingMode) -> AsyncIterator[ParcelCollection]:
        self.collections.append(([signer.id for signer in signers], mode))
        trusted_certificates = [signer.certificate for signer in signers]
        try:
            for parcel_serialized in list(self.queue):
                yield ParcelCollection(parcel_serialized, trusted_certificates, partial(self._ack, parcel_serialized))
        finally:
            self.closed_collections += 1

    async def _ack(self, parcel_serialized: bytes) -> None:
        self.queue.remove(parcel_serialized)
        self.acknowledged.append(parcel_serialized)


class Peer:
    """A third-party endpoint able to exchange parcels with the first-party endpoints"""

    def __init__(self, internet_address: str | None = None, key_type: KeyType = KeyType.ED25519) -> None:
        self.private_key = key_type.generate()
        self.identity_key = self.private_key.public_key()
        self.id = get_id_from_identity_key(self.identity_key)
        self.internet_address = internet_address
        self.session_key_pair = SessionKeyPair.generate()

    @property
    def connection_params(self) -> bytes:
        return NodeConnectionParams(self.identity_key, self.session_key_pair.session_key, self.internet_address).to_wire()

    def open_parcel(self, parcel_serialized: bytes) -> tuple[Parcel, ServiceMessage, SessionKey]:
        """Decrypt a parcel sent to this peer's initial session key"""
        parcel = Parcel.deserialize(parcel_serialized)
        envelope = SessionEnvelopedData.from_wire(parcel.payload)
        assert envelope.recipient_key_id == self.session_key_pair.session_key.key_id
        message = ServiceMessage.from_wire(envelope.decrypt(self.session_key_pair.private_key))
        return parcel, message, envelope.originator_session_key

    def make_parcel(  # noqa: PLR0913
        self,
        recipient: FirstPartyEndpoint,
        authorization: CertificationPath,
        session_key: SessionKey,
        message: ServiceMessage,
        *,
        creation_date: datetime | None = None,
        ttl: int = 3600,
    ) -> bytes:
        envelope, _ = SessionEnvelopedData.encrypt(message.to_wire(), session_key)
        parcel = Parcel(
            recipient_address=recipient.id,
            payload=envelope.to_wire(),
            sender_certificate=authorization.leaf_certificate,
            sender_ca_chain=authorization.certificate_authorities,
            creation_date=creation_date or datetime.now(UTC) - timedelta(seconds=1),
            ttl=ttl,
        )
        return parcel.serialize(self.private_key)


def make_context(gateway: FakeGateway | None = None) -> Context:
    return Context.from_database(Database('sqlite://'), gateway or FakeGateway())
