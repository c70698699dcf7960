# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import DateTime, Dialect, Integer, LargeBinary, String, UniqueConstraint, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

__all__ = (  # noqa: RUF022
    'Database',
    'Base',
    'ConfigItem',
    'FirstPartyEndpointRecord',
    'ThirdPartyEndpointRecord',
    'IdentityPrivateKeyRecord',
    'SessionPrivateKeyRecord',
    'IdentityPublicKeyRecord',
    'SessionPublicKeyRecord',
    'CertificateRecord',
)


class UTCDateTime(TypeDecorator[datetime]):
    """Store timezone aware datetimes as naive UTC values and return them as aware ones"""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:  # noqa: ARG002
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError('Only timezone aware datetimes can be stored')
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:  # noqa: ARG002
        return None if value is None else value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    pass


class ConfigItem(Base):
    __tablename__ = 'config_item'

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(String(1024))


class FirstPartyEndpointRecord(Base):
    __tablename__ = 'first_party_endpoint'

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    gateway_id: Mapped[str] = mapped_column(String(128))
    gateway_internet_address: Mapped[str] = mapped_column(String(255))


class ThirdPartyEndpointRecord(Base):
    __tablename__ = 'third_party_endpoint'

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    internet_address: Mapped[str | None] = mapped_column(String(255), index=True)
    is_private: Mapped[bool]


class IdentityPrivateKeyRecord(Base):
    __tablename__ = 'identity_private_key'

    node_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    private_key_der: Mapped[bytes] = mapped_column(LargeBinary)


class SessionPrivateKeyRecord(Base):
    __tablename__ = 'session_private_key'

    key_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    node_id: Mapped[str] = mapped_column(String(128), index=True)
    peer_id: Mapped[str | None] = mapped_column(String(128))
    private_key: Mapped[bytes] = mapped_column(LargeBinary)


class IdentityPublicKeyRecord(Base):
    __tablename__ = 'identity_public_key'

    peer_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    public_key_der: Mapped[bytes] = mapped_column(LargeBinary)


class SessionPublicKeyRecord(Base):
    __tablename__ = 'session_public_key'

    peer_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    key_id: Mapped[bytes] = mapped_column(LargeBinary)
    public_key: Mapped[bytes] = mapped_column(LargeBinary)
    creation_date: Mapped[datetime] = mapped_column(UTCDateTime)


class CertificateRecord(Base):
    __tablename__ = 'certificate'
    __table_args__ = (UniqueConstraint('subject_id', 'issuer_id', 'serialization'),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject_id: Mapped[str] = mapped_column(String(128), index=True)
    issuer_id: Mapped[str] = mapped_column(String(128), index=True)
    expiry_date: Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    serialization: Mapped[bytes] = mapped_column(LargeBinary)


class Database:
    """The SQLAlchemy engine and session factory shared by the stores"""

    def __init__(self, url: str) -> None:
        self.url = make_url(url)
        if self.url.get_backend_name() == 'sqlite' and self.url.database in {None, '', ':memory:'}:
            # all sessions must share the single connection that holds the in-memory database
            self.engine = create_engine(self.url, connect_args={'check_same_thread': False}, poolclass=StaticPool)
        else:
            self.engine = create_engine(self.url)
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({self.url.render_as_string(hide_password=True)!r})'

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Provide a session that commits when the block completes and rolls back if it raises"""
        with self._session_factory.begin() as session:
            yield session
