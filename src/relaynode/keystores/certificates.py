# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from datetime import UTC, datetime

from sqlalchemy import delete, select

from relaynode.database import CertificateRecord, Database
from relaynode.messages import CertificationPath

__all__ = ('CertificateStore',)


class CertificateStore:
    """
    Store for the certification paths of the first-party endpoints.

    Paths are indexed by the identifier of their leaf certificate subject and
    by the identifier of the node that issued the path (the gateway for the
    identity certificates). When several valid paths exist for the same pair,
    the one stored last is the current one.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def save(self, path: CertificationPath, issuer_id: str) -> None:
        serialization = path.serialize()
        with self.database.session() as session:
            existing = session.scalar(
                select(CertificateRecord).where(
                    CertificateRecord.subject_id == path.subject_id,
                    CertificateRecord.issuer_id == issuer_id,
                    CertificateRecord.serialization == serialization,
                ),
            )
            if existing is not None:
                # saving the same path again makes it the latest one
                session.delete(existing)
                session.flush()
            session.add(CertificateRecord(subject_id=path.subject_id, issuer_id=issuer_id, expiry_date=path.expiry_date, serialization=serialization))

    def retrieve_latest(self, subject_id: str, issuer_id: str) -> CertificationPath | None:
        with self.database.session() as session:
            serialization = session.scalar(
                select(CertificateRecord.serialization)
                .where(CertificateRecord.subject_id == subject_id, CertificateRecord.issuer_id == issuer_id, CertificateRecord.expiry_date > datetime.now(UTC))
                .order_by(CertificateRecord.id.desc())
                .limit(1),
            )
        return None if serialization is None else CertificationPath.deserialize(serialization)

    def retrieve_all(self, subject_id: str, issuer_id: str) -> list[CertificationPath]:
        """Return the valid paths for the subject and issuer, latest first"""
        with self.database.session() as session:
            serializations = session.scalars(
                select(CertificateRecord.serialization)
                .where(CertificateRecord.subject_id == subject_id, CertificateRecord.issuer_id == issuer_id, CertificateRecord.expiry_date > datetime.now(UTC))
                .order_by(CertificateRecord.id.desc()),
            ).all()
        return [CertificationPath.deserialize(serialization) for serialization in serializations]

    def delete_expired(self) -> int:
        """Delete the paths that expired and return how many were removed"""
        with self.database.session() as session:
            result = session.execute(delete(CertificateRecord).where(CertificateRecord.expiry_date <= datetime.now(UTC)))
            return result.rowcount
