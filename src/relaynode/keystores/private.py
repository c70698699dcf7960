# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from relaynode.database import Database, IdentityPrivateKeyRecord, SessionPrivateKeyRecord
from relaynode.exceptions import MissingKeyError
from relaynode.trust.private import PrivateKey, deserialize_private_key, serialize_private_key

__all__ = ('PrivateKeyStore',)


class PrivateKeyStore:
    """
    Store for the private keys of the first-party endpoints.

    Identity keys are stored by the identifier of the node they belong to.
    Session keys are stored by their key identifier, together with the node
    that owns them and, once the key was used to reach a specific peer, the
    identifier of that peer. A session key bound to a peer can only be used
    to decrypt messages from that peer, while an unbound one (an initial
    session key shared through the connection parameters) can be used with
    any peer.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def save_identity_key(self, node_id: str, private_key: PrivateKey) -> None:
        with self.database.session() as session:
            session.merge(IdentityPrivateKeyRecord(node_id=node_id, private_key_der=serialize_private_key(private_key)))

    def retrieve_identity_key(self, node_id: str) -> PrivateKey | None:
        with self.database.session() as session:
            record = session.get(IdentityPrivateKeyRecord, node_id)
            return None if record is None else deserialize_private_key(record.private_key_der)

    def save_session_key(self, private_key: X25519PrivateKey, key_id: bytes, node_id: str, peer_id: str | None = None) -> None:
        with self.database.session() as session:
            session.merge(SessionPrivateKeyRecord(key_id=key_id.hex(), node_id=node_id, peer_id=peer_id, private_key=private_key.private_bytes_raw()))

    def retrieve_session_key(self, key_id: bytes, node_id: str, peer_id: str) -> X25519PrivateKey:
        with self.database.session() as session:
            record = session.get(SessionPrivateKeyRecord, key_id.hex())
            if record is None:
                raise MissingKeyError(f'Session key {key_id.hex()} does not exist')
            if record.node_id != node_id:
                raise MissingKeyError(f'Session key {key_id.hex()} does not belong to node {node_id}')
            if record.peer_id is not None and record.peer_id != peer_id:
                raise MissingKeyError(f'Session key {key_id.hex()} is bound to another peer')
            return X25519PrivateKey.from_private_bytes(record.private_key)
