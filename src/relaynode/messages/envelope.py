# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import os
from dataclasses import dataclass
from typing import Protocol, Self

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .datamodel import Field, LiteralBytesAdapter, Opaque8Adapter, Opaque32Adapter, Structure, X25519PublicKeyAdapter

__all__ = 'SessionKey', 'SessionKeyPair', 'SessionKeyStore', 'SessionEnvelopedData'  # noqa: RUF022


KEY_ID_SIZE = 8
NONCE_SIZE = 12


class SessionKey(Structure):
    """The public half of a session key, tagged with the key identifier"""

    key_id = Field[bytes](Opaque8Adapter)
    public_key = Field[X25519PublicKey](X25519PublicKeyAdapter)


@dataclass(frozen=True)
class SessionKeyPair:
    session_key: SessionKey
    private_key: X25519PrivateKey

    @classmethod
    def generate(cls) -> Self:
        private_key = X25519PrivateKey.generate()
        session_key = SessionKey(key_id=os.urandom(KEY_ID_SIZE), public_key=private_key.public_key())
        return cls(session_key, private_key)


class SessionKeyStore(Protocol):
    def retrieve_session_key(self, key_id: bytes, node_id: str, peer_id: str) -> X25519PrivateKey: ...


class EnvelopeSignature(LiteralBytesAdapter, value=b'RNE\x01'):
    pass


class SessionEnvelopedData(Structure):
    """
    Data encrypted for the holder of a session key.

    The content encryption key is derived with HKDF-SHA256 from the X25519
    agreement between a fresh originator key and the recipient's session
    key, and the content is sealed with AES-GCM. The originator key pair is
    returned to the sender who keeps its private half, as the public half
    becomes the session key the recipient uses to reply.
    """

    format_signature = Field[bytes](EnvelopeSignature)
    recipient_key_id = Field[bytes](Opaque8Adapter)
    originator_key = Field[SessionKey](SessionKey)
    nonce = Field[bytes](Opaque8Adapter)
    ciphertext = Field[bytes](Opaque32Adapter)

    @classmethod
    def encrypt(cls, plaintext: bytes, recipient_session_key: SessionKey) -> tuple[Self, SessionKeyPair]:
        originator_key_pair = SessionKeyPair.generate()
        shared_secret = originator_key_pair.private_key.exchange(recipient_session_key.public_key)
        encryption_key = _derive_key(shared_secret, recipient_session_key.key_id, originator_key_pair.session_key.key_id)
        nonce = os.urandom(NONCE_SIZE)
        envelope = cls(
            recipient_key_id=recipient_session_key.key_id,
            originator_key=originator_key_pair.session_key,
            nonce=nonce,
            ciphertext=AESGCM(encryption_key).encrypt(nonce, plaintext, None),
        )
        return envelope, originator_key_pair

    @property
    def originator_session_key(self) -> SessionKey:
        return self.originator_key

    def decrypt(self, private_key: X25519PrivateKey) -> bytes:
        shared_secret = private_key.exchange(self.originator_key.public_key)
        encryption_key = _derive_key(shared_secret, self.recipient_key_id, self.originator_key.key_id)
        try:
            return AESGCM(encryption_key).decrypt(self.nonce, self.ciphertext, None)
        except InvalidTag as exc:
            raise ValueError('Could not decrypt the enveloped data') from exc

    def unwrap(self, key_store: SessionKeyStore, node_id: str, peer_id: str) -> bytes:
        """Decrypt the data with the recipient's session key found in the key store"""
        return self.decrypt(key_store.retrieve_session_key(self.recipient_key_id, node_id, peer_id))


def _derive_key(shared_secret: bytes, recipient_key_id: bytes, originator_key_id: bytes) -> bytes:
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=b'relaynode/envelope/v1' + recipient_key_id + originator_key_id)
    return hkdf.derive(shared_secret)
