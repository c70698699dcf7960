# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import cached_property
from typing import Self, assert_never

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey
from cryptography.hazmat.primitives.asymmetric.ed448 import Ed448PrivateKey
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509 import Certificate, CertificateBuilder, Name
from cryptography.x509.oid import NameOID

from .private import KeyType, PrivateKey, PublicKey, get_id_from_identity_key, key_digest

__all__ = (  # noqa: RUF022
    'CA',
    'Certificate',
    'issue_certificate',
    'subject_id',
    'issuer_id',
    'expiry_date',
    'serialize_certificate',
    'deserialize_certificate',
    'validate_certificate',
    'validate_certification_path',
)


@dataclass
class CA:
    private_key: PrivateKey
    certificate: Certificate

    def __post_init__(self) -> None:
        if self.private_key.public_key() != self.certificate.public_key():
            raise ValueError('The certificate and the private key do not match each other!')
        if not _basic_constraints(self.certificate).ca:
            raise ValueError('The certificate is not a CA!')

    @cached_property
    def id(self) -> str:
        return subject_id(self.certificate)

    @cached_property
    def path_length(self) -> int | None:
        return _basic_constraints(self.certificate).path_length

    @classmethod
    def new(cls, private_key: KeyType | PrivateKey = KeyType.ED25519, parent_ca: Self | None = None, path_length: int | None = None, days: int | None = None) -> Self:
        if path_length is not None and path_length < 0:
            raise ValueError('The path_length argument must be a non-negative integer or None')
        if isinstance(private_key, KeyType):
            private_key = private_key.generate()
        start_date = _utcnow()
        if parent_ca is not None:
            if parent_ca.path_length is not None:
                if parent_ca.path_length == 0:
                    raise ValueError('The parent CA cannot create any other intermediary CAs')
                max_path_length = parent_ca.path_length - 1
                path_length = max_path_length if path_length is None else min(path_length, max_path_length)
            end_date = min(start_date + timedelta(days=days or 3650), parent_ca.certificate.not_valid_after_utc)
            certificate = issue_certificate(
                subject_public_key=private_key.public_key(),
                issuer_private_key=parent_ca.private_key,
                issuer_certificate=parent_ca.certificate,
                validity_end_date=end_date,
                validity_start_date=start_date,
                is_ca=True,
                path_length=path_length,
            )
        else:
            certificate = issue_certificate(
                subject_public_key=private_key.public_key(),
                issuer_private_key=private_key,
                validity_end_date=start_date + timedelta(days=days or 3650),
                validity_start_date=start_date,
                is_ca=True,
                path_length=path_length,
            )
        return cls(private_key, certificate)

    def issue_node_certificate(self, public_key: PublicKey, *, days: int = 180, validity_end_date: datetime | None = None) -> Certificate:
        """
        Issue the identity certificate of a node registered with this CA.

        Node certificates are CAs themselves (with a path length of 0) since
        nodes need to issue delivery authorizations to their peers.
        """
        if self.path_length == 0:
            raise ValueError('This CA cannot issue node certificates as it cannot create intermediary CAs')
        if validity_end_date is None:
            validity_end_date = _utcnow() + timedelta(days=days)
        return issue_certificate(
            subject_public_key=public_key,
            issuer_private_key=self.private_key,
            issuer_certificate=self.certificate,
            validity_end_date=validity_end_date,
            is_ca=True,
            path_length=0,
        )

    def issue_delivery_authorization(self, public_key: PublicKey, expiry_date: datetime) -> Certificate:
        """Authorize the owner of the given identity key to deliver messages to this node"""
        return issue_certificate(
            subject_public_key=public_key,
            issuer_private_key=self.private_key,
            issuer_certificate=self.certificate,
            validity_end_date=expiry_date,
        )


def issue_certificate(  # noqa: PLR0913
    *,
    subject_public_key: PublicKey,
    issuer_private_key: PrivateKey,
    validity_end_date: datetime,
    issuer_certificate: Certificate | None = None,
    validity_start_date: datetime | None = None,
    is_ca: bool = False,
    path_length: int | None = None,
) -> Certificate:
    """
    Issue an X.509 certificate binding the public key to its identifier.

    The subject common name and the subject key identifier both hold the
    digest the identifier is derived from. The common name is limited to 64
    characters, so it carries the hex digest without the identifier prefix. When the issuer certificate is missing the certificate is self
    issued, but it must still be signed with the key of its subject.

    X.509 dates have a resolution of one second, so the validity dates are
    truncated to whole seconds.
    """
    start_date = _truncate(validity_start_date or _utcnow())
    end_date = _truncate(validity_end_date)
    if end_date <= start_date:
        raise ValueError('The end date of the validity period must be later than its start date')
    if path_length is not None and not is_ca:
        raise ValueError('Only CA certificates can have a path length constraint')

    subject = Name([x509.NameAttribute(NameOID.COMMON_NAME, key_digest(subject_public_key).hex())])
    if issuer_certificate is not None:
        constraints = _basic_constraints(issuer_certificate)
        if not constraints.ca:
            raise ValueError('The issuer certificate is not a CA')
        if is_ca and constraints.path_length == 0:
            raise ValueError('The issuer certificate cannot issue other CA certificates')
        if issuer_certificate.public_key() != issuer_private_key.public_key():
            raise ValueError('The issuer certificate and the issuer private key do not match each other')
        issuer = issuer_certificate.subject
        authority_key_id = issuer_certificate.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value.digest
    else:
        if subject_public_key != issuer_private_key.public_key():
            raise ValueError('Self-issued certificates must be signed with the key of their subject')
        issuer = subject
        authority_key_id = key_digest(subject_public_key)

    cert_builder = CertificateBuilder(
        issuer_name=issuer,
        subject_name=subject,
        public_key=subject_public_key,
        serial_number=x509.random_serial_number(),
        not_valid_before=start_date,
        not_valid_after=end_date,
    ).add_extension(
        x509.BasicConstraints(ca=is_ca, path_length=path_length),
        critical=True,
    ).add_extension(
        x509.SubjectKeyIdentifier(key_digest(subject_public_key)),
        critical=False,
    ).add_extension(
        x509.AuthorityKeyIdentifier(key_identifier=authority_key_id, authority_cert_issuer=None, authority_cert_serial_number=None),
        critical=False,
    )
    return cert_builder.sign(issuer_private_key, algorithm=_hash_algorithm(issuer_private_key))


def subject_id(certificate: Certificate) -> str:
    return get_id_from_identity_key(certificate.public_key())  # pyright: ignore[reportArgumentType]


def issuer_id(certificate: Certificate) -> str | None:
    try:
        authority_key_id = certificate.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier).value.key_identifier
    except x509.ExtensionNotFound:
        return None
    return None if authority_key_id is None else '0' + authority_key_id.hex()


def expiry_date(certificate: Certificate) -> datetime:
    return certificate.not_valid_after_utc


def serialize_certificate(certificate: Certificate) -> bytes:
    return certificate.public_bytes(Encoding.DER)


def deserialize_certificate(data: bytes) -> Certificate:
    try:
        return x509.load_der_x509_certificate(data)
    except ValueError as exc:
        raise ValueError(f'Malformed certificate: {exc}') from exc


def validate_certificate(certificate: Certificate, *, at: datetime | None = None) -> None:
    now = at or datetime.now(tz=UTC)
    if now < certificate.not_valid_before_utc:
        raise ValueError(f'Certificate for {subject_id(certificate)} is not yet valid')
    if certificate.not_valid_after_utc < now:
        raise ValueError(f'Certificate for {subject_id(certificate)} already expired')
    try:
        common_names = certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    except ValueError as exc:
        raise ValueError(f'Certificate has an invalid subject: {exc}') from exc
    if not common_names:
        raise ValueError('Certificate does not have a subject common name')


def validate_certification_path(leaf: Certificate, intermediates: Iterable[Certificate], trusted: Sequence[Certificate]) -> list[Certificate]:
    """
    Validate the leaf certificate against the trusted certificates.

    Return the certification path from the leaf up to (and including) the
    trusted certificate that anchors it, using the intermediate certificates
    to bridge the gap between them. Raise ValueError if no valid path exists.
    """
    intermediates = list(intermediates)
    validate_certificate(leaf)
    path = [leaf]
    current = leaf
    for _ in range(len(intermediates) + 1):
        if (anchor := _find_issuer(current, trusted)) is not None:
            path.append(anchor)
            return path
        if (issuer := _find_issuer(current, intermediates)) is None:
            break
        if not _basic_constraints(issuer).ca:
            raise ValueError(f'Certificate for {subject_id(issuer)} is not a CA')
        validate_certificate(issuer)
        path.append(issuer)
        intermediates.remove(issuer)
        current = issuer
    raise ValueError(f'No certification path could be found for {subject_id(leaf)}')


def _find_issuer(certificate: Certificate, candidates: Iterable[Certificate]) -> Certificate | None:
    for candidate in candidates:
        try:
            certificate.verify_directly_issued_by(candidate)
        except (ValueError, TypeError, InvalidSignature):
            continue
        return candidate
    return None


def _basic_constraints(certificate: Certificate) -> x509.BasicConstraints:
    try:
        return certificate.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        return x509.BasicConstraints(ca=False, path_length=None)


def _hash_algorithm(key: PrivateKey) -> hashes.SHA256 | None:
    """Return a hash algorithm that is suitable for signing with the key"""
    match key:
        case Ed25519PrivateKey() | Ed448PrivateKey():
            return None
        case EllipticCurvePrivateKey():
            return hashes.SHA256()
        case _:
            assert_never(key)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _truncate(date: datetime) -> datetime:
    if date.tzinfo is None:
        raise ValueError('Certificate dates must be timezone aware')
    return date.astimezone(UTC).replace(microsecond=0)
