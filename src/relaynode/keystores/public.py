# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from datetime import datetime

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PublicKey

from relaynode.database import Database, IdentityPublicKeyRecord, SessionPublicKeyRecord
from relaynode.messages import SessionKey
from relaynode.trust.private import PublicKey, deserialize_public_key, get_id_from_identity_key, serialize_public_key

__all__ = ('PublicKeyStore',)


class PublicKeyStore:
    """Store for the identity and session keys of the third-party endpoints"""

    def __init__(self, database: Database) -> None:
        self.database = database

    def save_identity_key(self, public_key: PublicKey) -> str:
        """Save the identity key and return the identifier of its owner"""
        peer_id = get_id_from_identity_key(public_key)
        with self.database.session() as session:
            session.merge(IdentityPublicKeyRecord(peer_id=peer_id, public_key_der=serialize_public_key(public_key)))
        return peer_id

    def retrieve_identity_key(self, peer_id: str) -> PublicKey | None:
        with self.database.session() as session:
            record = session.get(IdentityPublicKeyRecord, peer_id)
            return None if record is None else deserialize_public_key(record.public_key_der)

    def save_session_key(self, session_key: SessionKey, peer_id: str, creation_time: datetime) -> None:
        """Save the session key of the peer, unless a newer one is already stored"""
        with self.database.session() as session:
            record = session.get(SessionPublicKeyRecord, peer_id)
            if record is None:
                record = SessionPublicKeyRecord(peer_id=peer_id)
                session.add(record)
            elif record.creation_date > creation_time:
                return
            record.key_id = session_key.key_id
            record.public_key = session_key.public_key.public_bytes_raw()
            record.creation_date = creation_time

    def retrieve_last_session_key(self, peer_id: str) -> SessionKey | None:
        with self.database.session() as session:
            record = session.get(SessionPublicKeyRecord, peer_id)
            if record is None:
                return None
            return SessionKey(key_id=record.key_id, public_key=X25519PublicKey.from_public_bytes(record.public_key))
