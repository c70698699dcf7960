# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from functools import cached_property
from itertools import pairwise
from typing import Self

from cryptography.x509 import Certificate

from relaynode.trust.private import PrivateKey, PublicKey, sign, verify
from relaynode.trust.x509 import issuer_id, subject_id, validate_certificate, validate_certification_path

from .datamodel import (
    CertificateAdapter,
    CertificateListAdapter,
    DateTimeAdapter,
    Field,
    LiteralBytesAdapter,
    Opaque16Adapter,
    Opaque32Adapter,
    OptionalAdapter,
    PublicKeyAdapter,
    String8Adapter,
    String16Adapter,
    Structure,
    UInt32Adapter,
    WireData,
)
from .envelope import SessionEnvelopedData, SessionKey, SessionKeyPair, SessionKeyStore

__all__ = (  # noqa: RUF022
    'CertificationPath',
    'ServiceMessage',
    'SessionKey',
    'SessionKeyPair',
    'SessionEnvelopedData',
    'Parcel',
    'PrivateNodeRegistrationRequest',
    'PrivateNodeRegistration',
    'NodeConnectionParams',
)


MAX_TTL = 180 * 24 * 3600


# Format signatures

class CertificationPathSignature(LiteralBytesAdapter, value=b'RNC\x01'):
    pass


class ServiceMessageSignature(LiteralBytesAdapter, value=b'RNS\x01'):
    pass


class ParcelSignature(LiteralBytesAdapter, value=b'RNP\x01'):
    pass


class RegistrationRequestSignature(LiteralBytesAdapter, value=b'RNR\x01'):
    pass


class RegistrationSignature(LiteralBytesAdapter, value=b'RNA\x01'):
    pass


class ConnectionParamsSignature(LiteralBytesAdapter, value=b'RNK\x01'):
    pass


class TTLAdapter(UInt32Adapter):
    @classmethod
    def validate(cls, value: int, /) -> int:
        if not 0 <= value <= MAX_TTL:
            raise ValueError(f'The TTL must be between 0 and {MAX_TTL} seconds, got {value}')
        return value


class OptionalString8Adapter(OptionalAdapter[str], adapter=String8Adapter):
    pass


# Wire structures

class SignedData(Structure):
    """Content with a detached signature made by the key identified in the content"""

    content = Field[bytes](Opaque32Adapter)
    signature = Field[bytes](Opaque16Adapter)


class CertificationPathData(Structure):
    format_signature = Field[bytes](CertificationPathSignature)
    leaf_certificate = Field[Certificate](CertificateAdapter)
    certificate_authorities = Field[list[Certificate]](CertificateListAdapter)


class ParcelData(Structure):
    format_signature = Field[bytes](ParcelSignature)
    id = Field[str](String8Adapter)
    recipient_address = Field[str](String16Adapter)
    creation_date = Field[datetime](DateTimeAdapter)
    ttl = Field[int](TTLAdapter)
    sender_certificate = Field[Certificate](CertificateAdapter)
    sender_ca_chain = Field[list[Certificate]](CertificateListAdapter)
    payload = Field[bytes](Opaque32Adapter)


class RegistrationRequestData(Structure):
    format_signature = Field[bytes](RegistrationRequestSignature)
    public_key = Field[PublicKey](PublicKeyAdapter)
    authorization = Field[bytes](Opaque16Adapter)


# Protocol objects

@dataclass(frozen=True)
class CertificationPath:
    """A leaf certificate and the certificate authorities above it, nearest issuer first"""

    leaf_certificate: Certificate
    certificate_authorities: Sequence[Certificate] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, 'certificate_authorities', tuple(self.certificate_authorities))

    @classmethod
    def deserialize(cls, data: WireData) -> Self:
        path_data = CertificationPathData.from_wire(data)
        return cls(path_data.leaf_certificate, path_data.certificate_authorities)

    def serialize(self) -> bytes:
        return CertificationPathData(leaf_certificate=self.leaf_certificate, certificate_authorities=self.certificate_authorities).to_wire()

    @property
    def subject_id(self) -> str:
        return subject_id(self.leaf_certificate)

    @property
    def issuer_id(self) -> str | None:
        return issuer_id(self.leaf_certificate)

    @property
    def expiry_date(self) -> datetime:
        return self.leaf_certificate.not_valid_after_utc

    def validate(self) -> None:
        """Check that each certificate in the path was issued by the one that follows it"""
        chain = [self.leaf_certificate, *self.certificate_authorities]
        for certificate, issuer in pairwise(chain):
            if issuer_id(certificate) != subject_id(issuer):
                raise ValueError(f'Certificate for {subject_id(certificate)} was not issued by {subject_id(issuer)}')


class ServiceMessage(Structure):
    format_signature = Field[bytes](ServiceMessageSignature)
    type = Field[str](String16Adapter)
    content = Field[bytes](Opaque32Adapter)

    def __init__(self, type: str, content: bytes) -> None:  # noqa: A002
        super().__init__(type=type, content=content)


@dataclass
class Parcel:
    """
    A signed message carrying an encrypted payload through the gateway.

    The recipient address is the identifier of a private recipient or the
    internet address of a public one. The sender certificate is either the
    sender's own identity certificate or a delivery authorization issued by
    the recipient, in which case the sender CA chain links it back to the
    recipient's identity certificate and up to its gateway.
    """

    recipient_address: str
    payload: bytes
    sender_certificate: Certificate
    sender_ca_chain: Sequence[Certificate] = ()
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    creation_date: datetime = field(default_factory=lambda: datetime.now(UTC))
    ttl: int = 5 * 60

    @cached_property
    def sender_id(self) -> str:
        return subject_id(self.sender_certificate)

    @property
    def expiry_date(self) -> datetime:
        return self.creation_date + timedelta(seconds=self.ttl)

    @classmethod
    def deserialize(cls, data: WireData) -> Self:
        """Decode the parcel, raising ValueError if it's malformed or its signature doesn't match the sender"""
        signed_data = SignedData.from_wire(data)
        parcel_data = ParcelData.from_wire(signed_data.content)
        verify(parcel_data.sender_certificate.public_key(), signed_data.signature, signed_data.content)  # pyright: ignore[reportArgumentType]
        return cls(
            recipient_address=parcel_data.recipient_address,
            payload=parcel_data.payload,
            sender_certificate=parcel_data.sender_certificate,
            sender_ca_chain=parcel_data.sender_ca_chain,
            id=parcel_data.id,
            creation_date=parcel_data.creation_date,
            ttl=parcel_data.ttl,
        )

    def serialize(self, private_key: PrivateKey) -> bytes:
        """Encode the parcel, signed with the private key of the sender certificate"""
        if private_key.public_key() != self.sender_certificate.public_key():
            raise ValueError('The private key does not match the sender certificate')
        content = ParcelData(
            id=self.id,
            recipient_address=self.recipient_address,
            creation_date=self.creation_date,
            ttl=self.ttl,
            sender_certificate=self.sender_certificate,
            sender_ca_chain=self.sender_ca_chain,
            payload=self.payload,
        ).to_wire()
        return SignedData(content=content, signature=sign(private_key, content)).to_wire()

    def validate(self, trusted_certificates: Sequence[Certificate] = ()) -> None:
        """
        Check that the parcel is within its validity period and that the
        sender certificate is valid. When trusted certificates are given,
        the sender certificate must also chain up to one of them.
        """
        now = datetime.now(UTC)
        if self.creation_date > now:
            raise ValueError('The parcel creation date is in the future')
        if self.expiry_date < now:
            raise ValueError('The parcel already expired')
        if trusted_certificates:
            validate_certification_path(self.sender_certificate, self.sender_ca_chain, trusted_certificates)
        else:
            validate_certificate(self.sender_certificate)

    def unwrap_payload(self, key_store: SessionKeyStore) -> tuple[ServiceMessage, SessionKey]:
        """
        Decrypt the payload with the session key the recipient shared with
        the sender. Return the service message and the session key the
        sender attached for replies.

        Raise ValueError if the payload is malformed or cannot be decrypted,
        or the key store error if the session key is not available.
        """
        envelope = SessionEnvelopedData.from_wire(self.payload)
        plaintext = envelope.unwrap(key_store, node_id=self.recipient_address, peer_id=self.sender_id)
        return ServiceMessage.from_wire(plaintext), envelope.originator_session_key


@dataclass(frozen=True)
class PrivateNodeRegistrationRequest:
    """A request to register a private node, signed with the node's identity key"""

    public_key: PublicKey
    authorization: bytes

    @classmethod
    def deserialize(cls, data: WireData) -> Self:
        signed_data = SignedData.from_wire(data)
        request_data = RegistrationRequestData.from_wire(signed_data.content)
        verify(request_data.public_key, signed_data.signature, signed_data.content)
        return cls(request_data.public_key, request_data.authorization)

    def serialize(self, private_key: PrivateKey) -> bytes:
        if private_key.public_key() != self.public_key:
            raise ValueError('The private key does not match the public key in the request')
        content = RegistrationRequestData(public_key=self.public_key, authorization=self.authorization).to_wire()
        return SignedData(content=content, signature=sign(private_key, content)).to_wire()


class PrivateNodeRegistration(Structure):
    format_signature = Field[bytes](RegistrationSignature)
    node_certificate = Field[Certificate](CertificateAdapter)
    gateway_certificate = Field[Certificate](CertificateAdapter)
    gateway_internet_address = Field[str](String8Adapter)

    def __init__(self, node_certificate: Certificate, gateway_certificate: Certificate, gateway_internet_address: str) -> None:
        super().__init__(node_certificate=node_certificate, gateway_certificate=gateway_certificate, gateway_internet_address=gateway_internet_address)


class NodeConnectionParams(Structure):
    """
    The parameters needed to reach a node: its identity key, its initial
    session key and, for public nodes, its internet address.
    """

    format_signature = Field[bytes](ConnectionParamsSignature)
    identity_key = Field[PublicKey](PublicKeyAdapter)
    session_key = Field[SessionKey](SessionKey)
    internet_address = Field[str | None](OptionalString8Adapter, default=None)

    def __init__(self, identity_key: PublicKey, session_key: SessionKey, internet_address: str | None = None) -> None:
        super().__init__(identity_key=identity_key, session_key=session_key, internet_address=internet_address)
