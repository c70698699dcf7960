# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from .certificates import CertificateStore
from .private import PrivateKeyStore
from .public import PublicKeyStore

__all__ = 'PrivateKeyStore', 'PublicKeyStore', 'CertificateStore'  # noqa: RUF022
