# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Self

from cryptography.x509 import Certificate
from sqlalchemy import select

from relaynode.config import ConfigKey
from relaynode.database import FirstPartyEndpointRecord
from relaynode.exceptions import InvalidEndpointError, RegistrationError
from relaynode.gateway import GatewayError, Signer
from relaynode.messages import CertificationPath, PrivateNodeRegistration, PrivateNodeRegistrationRequest
from relaynode.trust.private import KeyType, PrivateKey, PublicKey
from relaynode.trust.x509 import CA, expiry_date, issuer_id, subject_id

from .channel import EndpointChannel
from .third_party import ThirdPartyEndpoint

if TYPE_CHECKING:
    from relaynode.context import Context

__all__ = ('FirstPartyEndpoint',)


@dataclass(frozen=True)
class FirstPartyEndpoint:
    """A local endpoint, registered with the gateway that issued its identity certificate"""

    identity_certificate: Certificate
    private_key: PrivateKey
    id: str
    gateway_internet_address: str

    @property
    def signer(self) -> Signer:
        return Signer(self.identity_certificate, self.private_key)

    @property
    def expiry_date(self) -> datetime:
        return expiry_date(self.identity_certificate)

    @classmethod
    async def generate(cls, context: 'Context', key_type: KeyType = KeyType.ED25519) -> Self:
        """Create a new identity, register it with the gateway and make it the active one"""
        private_key = key_type.generate()
        registration = await _register_with_gateway(private_key.public_key(), private_key, context)
        endpoint_id = _save_registration(registration, context)
        context.private_key_store.save_identity_key(endpoint_id, private_key)
        context.config.set(ConfigKey.ACTIVE_FIRST_PARTY_ENDPOINT_ID, endpoint_id)
        context.logger.info('endpoint_registered', endpoint_id=endpoint_id, gateway_internet_address=registration.gateway_internet_address)
        return cls(registration.node_certificate, private_key, endpoint_id, registration.gateway_internet_address)

    @classmethod
    def load_active(cls, context: 'Context') -> Self | None:
        """Load the active identity, or return None if there's none or its data is incomplete"""
        endpoint_id = context.config.get(ConfigKey.ACTIVE_FIRST_PARTY_ENDPOINT_ID)
        if endpoint_id is None:
            return None
        private_key = context.private_key_store.retrieve_identity_key(endpoint_id)
        if private_key is None:
            return None
        with context.database.session() as session:
            record = session.get(FirstPartyEndpointRecord, endpoint_id)
        if record is None:
            return None
        path = context.certificate_store.retrieve_latest(endpoint_id, record.gateway_id)
        if path is None:
            return None
        return cls(path.leaf_certificate, private_key, endpoint_id, record.gateway_internet_address)

    @classmethod
    def load(cls, id: str, context: 'Context') -> Self | None:  # noqa: A002
        """Load the identity with the given id, or return None if it's not registered"""
        with context.database.session() as session:
            record = session.get(FirstPartyEndpointRecord, id)
        return None if record is None else cls._from_record(record, context)

    @classmethod
    def load_all(cls, context: 'Context') -> list[Self]:
        with context.database.session() as session:
            records = session.scalars(select(FirstPartyEndpointRecord).order_by(FirstPartyEndpointRecord.id)).all()
        return [cls._from_record(record, context) for record in records]

    @classmethod
    def _from_record(cls, record: FirstPartyEndpointRecord, context: 'Context') -> Self:
        path = context.certificate_store.retrieve_latest(record.id, record.gateway_id)
        if path is None:
            raise InvalidEndpointError(f'Could not find the certificate for {record.id}')
        private_key = context.private_key_store.retrieve_identity_key(record.id)
        if private_key is None:
            raise InvalidEndpointError(f'Could not find the private key for {record.id}')
        return cls(path.leaf_certificate, private_key, record.id, record.gateway_internet_address)

    def get_channel(self, peer: ThirdPartyEndpoint, context: 'Context') -> EndpointChannel:
        return EndpointChannel(self, peer, context)

    def issue_authorization(self, peer: ThirdPartyEndpoint, expiry_date: datetime, context: 'Context') -> CertificationPath:
        """
        Authorize the peer to send messages to this endpoint until the expiry date.

        The returned path starts with the delivery authorization, followed by
        this endpoint's identity certificate and the certificate authorities
        above it, up to the gateway.
        """
        gateway_id = issuer_id(self.identity_certificate)
        identity_path = None if gateway_id is None else context.certificate_store.retrieve_latest(self.id, gateway_id)
        if identity_path is None:
            raise InvalidEndpointError(f'Could not find the gateway certificate for {self.id}')
        authority = CA(self.private_key, self.identity_certificate)
        authorization = authority.issue_delivery_authorization(peer.identity_key, expiry_date)
        return CertificationPath(authorization, [self.identity_certificate, *identity_path.certificate_authorities])

    async def renew_certificate(self, context: 'Context') -> Self | None:
        """
        Register again with the gateway to obtain a new identity certificate.

        Return the renewed endpoint, or None if the gateway issued a
        certificate that doesn't expire later than the current one, in which
        case the new certificate is discarded.
        """
        registration = await _register_with_gateway(self.identity_certificate.public_key(), self.private_key, context)  # pyright: ignore[reportArgumentType]
        new_expiry_date = expiry_date(registration.node_certificate)
        if new_expiry_date <= self.expiry_date:
            context.logger.info('certificate_renewal_skipped', endpoint_id=self.id, expiry_date=new_expiry_date.isoformat())
            return None
        _save_registration(registration, context)
        context.logger.info('certificate_renewed', endpoint_id=self.id, expiry_date=new_expiry_date.isoformat())
        return self.__class__(registration.node_certificate, self.private_key, self.id, registration.gateway_internet_address)


async def _register_with_gateway(public_key: PublicKey, private_key: PrivateKey, context: 'Context') -> PrivateNodeRegistration:
    try:
        authorization = await context.gateway.pre_register_node(public_key)
        request = PrivateNodeRegistrationRequest(public_key, authorization)
        registration = await context.gateway.register_node(request.serialize(private_key))
    except GatewayError as exc:
        raise RegistrationError('Failed to register with the gateway') from exc
    if registration.node_certificate.public_key() != public_key:
        raise RegistrationError('The gateway issued a certificate for a different key')
    return registration


def _save_registration(registration: PrivateNodeRegistration, context: 'Context') -> str:
    """Save the identity certificate path and the endpoint record, returning the endpoint id"""
    endpoint_id = subject_id(registration.node_certificate)
    gateway_id = subject_id(registration.gateway_certificate)
    context.certificate_store.save(CertificationPath(registration.node_certificate, [registration.gateway_certificate]), gateway_id)
    with context.database.session() as session:
        session.merge(FirstPartyEndpointRecord(id=endpoint_id, gateway_id=gateway_id, gateway_internet_address=registration.gateway_internet_address))
    return endpoint_id
