# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Self

import idna
from sqlalchemy import select

from relaynode.database import ThirdPartyEndpointRecord
from relaynode.exceptions import InvalidEndpointError
from relaynode.messages import NodeConnectionParams, SessionKey
from relaynode.trust.private import PublicKey

if TYPE_CHECKING:
    from relaynode.context import Context

__all__ = 'PeerKind', 'ThirdPartyEndpoint', 'normalize_internet_address'  # noqa: RUF022


class PeerKind(Enum):
    PRIVATE = 'private'  # reachable only through the gateway the first-party endpoints are registered with
    PUBLIC = 'public'    # reachable at its own internet address

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}.{self.name}'


def normalize_internet_address(internet_address: str) -> str:
    """Return the ASCII form of the internet address, raising ValueError if it's not a valid domain name"""
    try:
        return idna.encode(internet_address.rstrip('.'), uts46=True).decode()
    except idna.IDNAError as exc:
        raise ValueError(f'Invalid internet address {internet_address!r}: {exc}') from exc


@dataclass(frozen=True)
class ThirdPartyEndpoint:
    """A remote endpoint known by its identity key"""

    id: str
    identity_key: PublicKey
    kind: PeerKind
    internet_address: str | None = None

    def __post_init__(self) -> None:
        if (self.kind is PeerKind.PUBLIC) != (self.internet_address is not None):
            raise ValueError('Public endpoints must have an internet address and private endpoints must not have one')

    @property
    def is_private(self) -> bool:
        return self.kind is PeerKind.PRIVATE

    @classmethod
    def load(cls, id: str, context: 'Context') -> Self | None:  # noqa: A002
        with context.database.session() as session:
            record = session.get(ThirdPartyEndpointRecord, id)
        if record is None:
            return None
        return cls._from_record(record, context)

    @classmethod
    def load_by_address(cls, internet_address: str, context: 'Context') -> Self | None:
        """Load the public endpoint with the given internet address"""
        try:
            internet_address = normalize_internet_address(internet_address)
        except ValueError:
            return None
        with context.database.session() as session:
            record = session.scalar(
                select(ThirdPartyEndpointRecord)
                .where(ThirdPartyEndpointRecord.internet_address == internet_address, ThirdPartyEndpointRecord.is_private.is_(False))
                .limit(1),
            )
        if record is None:
            return None
        return cls._from_record(record, context)

    @classmethod
    def import_params(cls, serialized_params: bytes, context: 'Context') -> Self:
        """
        Import the connection parameters of a peer and return its reference.

        Importing the parameters of an already known peer replaces its record
        and makes the session key in the parameters its latest session key.
        """
        try:
            params = NodeConnectionParams.from_wire(serialized_params)
            internet_address = None if params.internet_address is None else normalize_internet_address(params.internet_address)
        except ValueError as exc:
            raise InvalidEndpointError('Connection parameters are malformed or invalid') from exc

        peer_id = context.public_key_store.save_identity_key(params.identity_key)
        context.public_key_store.save_session_key(params.session_key, peer_id, datetime.now(UTC))
        kind = PeerKind.PRIVATE if internet_address is None else PeerKind.PUBLIC
        with context.database.session() as session:
            session.merge(ThirdPartyEndpointRecord(id=peer_id, internet_address=internet_address, is_private=kind is PeerKind.PRIVATE))
        context.logger.info('peer_imported', peer_id=peer_id, kind=kind.value, internet_address=internet_address)
        return cls(peer_id, params.identity_key, kind, internet_address)

    def get_session_key(self, context: 'Context') -> SessionKey:
        session_key = context.public_key_store.retrieve_last_session_key(self.id)
        if session_key is None:
            raise InvalidEndpointError(f'Could not find a session key for peer {self.id}')
        return session_key

    @classmethod
    def _from_record(cls, record: ThirdPartyEndpointRecord, context: 'Context') -> Self:
        identity_key = context.public_key_store.retrieve_identity_key(record.id)
        if identity_key is None:
            raise InvalidEndpointError(f'Could not find the identity key for peer {record.id}')
        if record.is_private:
            return cls(record.id, identity_key, PeerKind.PRIVATE)
        return cls(record.id, identity_key, PeerKind.PUBLIC, record.internet_address)
