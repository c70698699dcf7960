# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import hashlib
from enum import Enum

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey, EllipticCurvePublicKey
from cryptography.hazmat.primitives.asymmetric.ed448 import Ed448PrivateKey, Ed448PublicKey
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, PublicFormat, load_der_private_key, load_der_public_key

__all__ = (  # noqa: RUF022
    'KeyType',
    'PrivateKey',
    'PublicKey',
    'sign',
    'verify',
    'serialize_private_key',
    'deserialize_private_key',
    'serialize_public_key',
    'deserialize_public_key',
    'get_id_from_identity_key',
)


type PrivateKey = Ed25519PrivateKey | Ed448PrivateKey | EllipticCurvePrivateKey
type PublicKey = Ed25519PublicKey | Ed448PublicKey | EllipticCurvePublicKey


class KeyType(Enum):
    ED25519 = 'ED25519'
    ED448 = 'ED448'
    ECDSA = 'ECDSA'

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}.{self.name}'

    def generate(self) -> PrivateKey:
        match self:
            case KeyType.ED25519:
                return Ed25519PrivateKey.generate()
            case KeyType.ED448:
                return Ed448PrivateKey.generate()
            case KeyType.ECDSA:
                return ec.generate_private_key(ec.SECP256R1())


def sign(private_key: PrivateKey, data: bytes) -> bytes:
    match private_key:
        case Ed25519PrivateKey() | Ed448PrivateKey():
            return private_key.sign(data)
        case EllipticCurvePrivateKey():
            return private_key.sign(data, ec.ECDSA(hashes.SHA256()))
        case _:
            raise TypeError(f'Unsupported key type: {private_key.__class__.__qualname__!r}')


def verify(public_key: PublicKey, signature: bytes, data: bytes) -> None:
    """Verify the signature over data, raising ValueError if it doesn't match"""
    try:
        match public_key:
            case Ed25519PublicKey() | Ed448PublicKey():
                public_key.verify(signature, data)
            case EllipticCurvePublicKey():
                public_key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
            case _:
                raise ValueError(f'Unsupported key type: {public_key.__class__.__qualname__!r}')
    except InvalidSignature as exc:
        raise ValueError('The signature does not match the data') from exc


def serialize_private_key(private_key: PrivateKey) -> bytes:
    return private_key.private_bytes(Encoding.DER, PrivateFormat.PKCS8, NoEncryption())


def deserialize_private_key(data: bytes) -> PrivateKey:
    try:
        key = load_der_private_key(data, password=None)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise ValueError(f'Malformed private key: {exc}') from exc
    match key:
        case Ed25519PrivateKey() | Ed448PrivateKey() | EllipticCurvePrivateKey():
            return key
        case _:
            raise ValueError(f'Unsupported key type: {key.__class__.__qualname__!r}')


def serialize_public_key(public_key: PublicKey) -> bytes:
    return public_key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)


def deserialize_public_key(data: bytes) -> PublicKey:
    try:
        key = load_der_public_key(data)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise ValueError(f'Malformed public key: {exc}') from exc
    match key:
        case Ed25519PublicKey() | Ed448PublicKey() | EllipticCurvePublicKey():
            return key
        case _:
            raise ValueError(f'Unsupported key type: {key.__class__.__qualname__!r}')


def key_digest(public_key: PublicKey) -> bytes:
    """Return the SHA-256 digest of the DER encoded SubjectPublicKeyInfo"""
    return hashlib.sha256(serialize_public_key(public_key)).digest()


def get_id_from_identity_key(public_key: PublicKey) -> str:
    """
    Derive the stable identifier of the node that owns the identity key.

    The identifier is the hex encoded SHA-256 digest of the key prefixed with
    the version digit '0'. The same digest is used as the subject key
    identifier of the node's certificates, which allows the identifier of a
    certificate issuer to be computed from its authority key identifier.
    """
    return '0' + key_digest(public_key).hex()
