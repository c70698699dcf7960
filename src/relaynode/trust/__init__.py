# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from .private import KeyType, PrivateKey, PublicKey, get_id_from_identity_key
from .x509 import CA, Certificate, expiry_date, issuer_id, subject_id

__all__ = 'CA', 'Certificate', 'KeyType', 'PrivateKey', 'PublicKey', 'expiry_date', 'get_id_from_identity_key', 'issuer_id', 'subject_id'
