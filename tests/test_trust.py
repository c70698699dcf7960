# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from datetime import UTC, datetime, timedelta

import pytest
from cryptography import x509

from relaynode.trust import CA, KeyType, expiry_date, get_id_from_identity_key, issuer_id, subject_id
from relaynode.trust.private import (
    deserialize_private_key,
    deserialize_public_key,
    key_digest,
    serialize_private_key,
    serialize_public_key,
    sign,
    verify,
)
from relaynode.trust.x509 import (
    deserialize_certificate,
    issue_certificate,
    serialize_certificate,
    validate_certificate,
    validate_certification_path,
)


class TestKeys:

    @pytest.mark.parametrize('key_type', list(KeyType))
    def test_sign_and_verify(self, key_type: KeyType) -> None:
        private_key = key_type.generate()
        signature = sign(private_key, b'data')
        verify(private_key.public_key(), signature, b'data')
        with pytest.raises(ValueError, match='The signature does not match the data'):
            verify(private_key.public_key(), signature, b'other data')

    @pytest.mark.parametrize('key_type', list(KeyType))
    def test_key_serialization(self, key_type: KeyType) -> None:
        private_key = key_type.generate()
        assert deserialize_private_key(serialize_private_key(private_key)).public_key() == private_key.public_key()
        assert deserialize_public_key(serialize_public_key(private_key.public_key())) == private_key.public_key()

    def test_malformed_keys(self) -> None:
        with pytest.raises(ValueError, match='Malformed private key'):
            deserialize_private_key(b'garbage')
        with pytest.raises(ValueError, match='Malformed public key'):
            deserialize_public_key(b'garbage')

    def test_identifier(self) -> None:
        public_key = KeyType.ED25519.generate().public_key()
        identifier = get_id_from_identity_key(public_key)
        assert identifier.startswith('0')
        assert len(identifier) == 65
        assert identifier == get_id_from_identity_key(deserialize_public_key(serialize_public_key(public_key)))
        assert identifier != get_id_from_identity_key(KeyType.ED25519.generate().public_key())


class TestCertificates:

    def setup_method(self) -> None:
        self.gateway = CA.new()

    def test_certificate_identifiers(self) -> None:
        node_key = KeyType.ECDSA.generate()
        certificate = self.gateway.issue_node_certificate(node_key.public_key())
        assert subject_id(certificate) == get_id_from_identity_key(node_key.public_key())
        assert issuer_id(certificate) == self.gateway.id
        assert issuer_id(self.gateway.certificate) == self.gateway.id
        common_names = certificate.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
        assert [attribute.value for attribute in common_names] == [key_digest(node_key.public_key()).hex()]
        assert subject_id(certificate) == '0' + common_names[0].value

    def test_certificate_common_name_length(self) -> None:
        for key_type in KeyType:
            certificate = self.gateway.issue_delivery_authorization(key_type.generate().public_key(), datetime.now(UTC) + timedelta(days=1))
            common_names = certificate.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
            assert len(common_names[0].value) == 64

    def test_certificate_serialization(self) -> None:
        certificate = self.gateway.issue_node_certificate(KeyType.ED25519.generate().public_key())
        assert deserialize_certificate(serialize_certificate(certificate)) == certificate
        with pytest.raises(ValueError, match='Malformed certificate'):
            deserialize_certificate(b'garbage')

    def test_validity_dates(self) -> None:
        end_date = datetime.now(UTC) + timedelta(days=10, microseconds=123456)
        certificate = self.gateway.issue_node_certificate(KeyType.ED25519.generate().public_key(), validity_end_date=end_date)
        assert expiry_date(certificate) == end_date.replace(microsecond=0)
        validate_certificate(certificate)
        with pytest.raises(ValueError, match='already expired'):
            validate_certificate(certificate, at=end_date + timedelta(days=1))
        with pytest.raises(ValueError, match='not yet valid'):
            validate_certificate(certificate, at=datetime.now(UTC) - timedelta(days=1))
        with pytest.raises(ValueError, match='must be timezone aware'):
            self.gateway.issue_node_certificate(KeyType.ED25519.generate().public_key(), validity_end_date=datetime.now() + timedelta(days=1))  # noqa: DTZ005
        with pytest.raises(ValueError, match='must be later than its start date'):
            self.gateway.issue_node_certificate(KeyType.ED25519.generate().public_key(), validity_end_date=datetime.now(UTC) - timedelta(days=1))

    def test_path_length_constraints(self) -> None:
        node_key = KeyType.ED25519.generate()
        node = CA(node_key, self.gateway.issue_node_certificate(node_key.public_key()))
        assert node.path_length == 0
        with pytest.raises(ValueError, match='cannot issue node certificates'):
            node.issue_node_certificate(KeyType.ED25519.generate().public_key())
        with pytest.raises(ValueError, match='cannot create any other intermediary CAs'):
            CA.new(parent_ca=node)

        peer_key = KeyType.ED25519.generate()
        authorization = node.issue_delivery_authorization(peer_key.public_key(), datetime.now(UTC) + timedelta(days=1))
        with pytest.raises(ValueError, match='The certificate is not a CA'):
            CA(peer_key, authorization)
        with pytest.raises(ValueError, match='do not match each other'):
            CA(peer_key, node.certificate)

    def test_self_issued_certificates(self) -> None:
        private_key = KeyType.ED25519.generate()
        with pytest.raises(ValueError, match='must be signed with the key of their subject'):
            issue_certificate(
                subject_public_key=private_key.public_key(),
                issuer_private_key=KeyType.ED25519.generate(),
                validity_end_date=datetime.now(UTC) + timedelta(days=1),
            )
        certificate = issue_certificate(subject_public_key=private_key.public_key(), issuer_private_key=private_key, validity_end_date=datetime.now(UTC) + timedelta(days=1))
        assert issuer_id(certificate) == subject_id(certificate)

    def test_certification_path_validation(self) -> None:
        node_key = KeyType.ED25519.generate()
        node = CA(node_key, self.gateway.issue_node_certificate(node_key.public_key()))
        authorization = node.issue_delivery_authorization(KeyType.ED448.generate().public_key(), datetime.now(UTC) + timedelta(days=1))

        path = validate_certification_path(authorization, [node.certificate, self.gateway.certificate], [node.certificate])
        assert path == [authorization, node.certificate]

        path = validate_certification_path(authorization, [node.certificate], [self.gateway.certificate])
        assert path == [authorization, node.certificate, self.gateway.certificate]

        with pytest.raises(ValueError, match='No certification path could be found'):
            validate_certification_path(authorization, [], [self.gateway.certificate])
        with pytest.raises(ValueError, match='No certification path could be found'):
            validate_certification_path(authorization, [node.certificate], [CA.new().certificate])
