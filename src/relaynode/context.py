# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from dataclasses import dataclass, field
from typing import Self

from structlog.stdlib import BoundLogger

from relaynode.config import Config
from relaynode.database import Database
from relaynode.gateway import GatewayClient
from relaynode.keystores import CertificateStore, PrivateKeyStore, PublicKeyStore
from relaynode.logging import configure_logging, get_logger
from relaynode.settings import Settings

__all__ = ('Context',)


@dataclass
class Context:
    """The collaborators used by the endpoint, messaging and maintenance operations"""

    database: Database
    gateway: GatewayClient
    private_key_store: PrivateKeyStore
    public_key_store: PublicKeyStore
    certificate_store: CertificateStore
    config: Config
    logger: BoundLogger = field(default_factory=lambda: get_logger('relaynode'))

    @classmethod
    def from_database(cls, database: Database, gateway: GatewayClient) -> Self:
        """Build a context whose stores all live in the given database"""
        database.create_tables()
        return cls(
            database=database,
            gateway=gateway,
            private_key_store=PrivateKeyStore(database),
            public_key_store=PublicKeyStore(database),
            certificate_store=CertificateStore(database),
            config=Config(database),
        )

    @classmethod
    def create(cls, settings: Settings, gateway: GatewayClient) -> Self:
        configure_logging(settings.log_level, json_output=settings.log_json)
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        return cls.from_database(Database(settings.database_url), gateway)
