# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from enum import StrEnum

from relaynode.database import ConfigItem, Database

__all__ = 'Config', 'ConfigKey'  # noqa: RUF022


class ConfigKey(StrEnum):
    ACTIVE_FIRST_PARTY_ENDPOINT_ID = 'active_first_party_endpoint_id'


class Config:
    """Persistent key/value configuration of the node"""

    def __init__(self, database: Database) -> None:
        self.database = database

    def get(self, key: ConfigKey) -> str | None:
        with self.database.session() as session:
            item = session.get(ConfigItem, str(key))
            return None if item is None else item.value

    def set(self, key: ConfigKey, value: str) -> None:
        with self.database.session() as session:
            session.merge(ConfigItem(key=str(key), value=value))
