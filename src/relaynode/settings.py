# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ('Settings',)


class Settings(BaseSettings):
    """Runtime settings, read from RELAYNODE_* environment variables or a .env file"""

    model_config = SettingsConfigDict(
        env_prefix='RELAYNODE_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    data_dir: Path = Field(default=Path.home() / '.local' / 'share' / 'relaynode', description='Directory holding the node database')
    database_name: str = Field(default='relaynode.sqlite', description='Name of the database file in the data directory')
    log_level: Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'] = Field(default='INFO', description='Logging level')
    log_json: bool = Field(default=False, description='Render log entries as JSON')

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_name

    @property
    def database_url(self) -> str:
        return f'sqlite:///{self.database_path}'
