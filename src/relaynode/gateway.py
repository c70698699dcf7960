# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from typing import Protocol

from cryptography.x509 import Certificate

from relaynode.messages import Parcel, PrivateNodeRegistration
from relaynode.trust.private import PrivateKey, PublicKey, sign
from relaynode.trust.x509 import subject_id

__all__ = 'GatewayClient', 'GatewayError', 'StreamingMode', 'Signer', 'ParcelCollection'  # noqa: RUF022


class GatewayError(Exception):
    """Base class for the errors raised by a gateway client when talking to the gateway"""


class StreamingMode(Enum):
    KEEP_ALIVE = 'keep-alive'
    CLOSE_UPON_COMPLETION = 'close-upon-completion'

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}.{self.name}'


@dataclass(frozen=True)
class Signer:
    """Produces detached signatures proving to the gateway who delivers or collects parcels"""

    certificate: Certificate
    private_key: PrivateKey

    def __post_init__(self) -> None:
        if self.private_key.public_key() != self.certificate.public_key():
            raise ValueError('The certificate and the private key do not match each other')

    @cached_property
    def id(self) -> str:
        return subject_id(self.certificate)

    def sign(self, data: bytes) -> bytes:
        return sign(self.private_key, data)


@dataclass
class ParcelCollection:
    """A parcel collected from the gateway, which stays there until acknowledged"""

    parcel_serialized: bytes
    trusted_certificates: Sequence[Certificate]
    ack: Callable[[], Awaitable[None]]

    def deserialize_and_validate_parcel(self) -> Parcel:
        """Return the parcel, raising ValueError if it's malformed or invalid"""
        parcel = Parcel.deserialize(self.parcel_serialized)
        parcel.validate(self.trusted_certificates)
        return parcel


class GatewayClient(Protocol):
    """
    The transport used to talk to the gateway.

    Any GatewayError raised by its methods is propagated to the caller,
    unless stated otherwise by the operation that uses the client.
    """

    async def pre_register_node(self, public_key: PublicKey) -> bytes:
        """Obtain an authorization to register the node that owns the key"""
        ...

    async def register_node(self, request_serialized: bytes) -> PrivateNodeRegistration: ...

    async def deliver_parcel(self, parcel_serialized: bytes, signer: Signer) -> None: ...

    def collect_parcels(self, signers: Sequence[Signer], mode: StreamingMode) -> AsyncIterator[ParcelCollection]:
        """
        Stream the parcels addressed to the nodes of the signers.

        In KEEP_ALIVE mode the stream waits for new parcels until it is closed,
        otherwise it ends once the parcels queued in the gateway are delivered.
        """
        ...
