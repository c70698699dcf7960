# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from .channel import EndpointChannel
from .first_party import FirstPartyEndpoint
from .third_party import PeerKind, ThirdPartyEndpoint

__all__ = 'FirstPartyEndpoint', 'ThirdPartyEndpoint', 'PeerKind', 'EndpointChannel'  # noqa: RUF022
