# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from .incoming import IncomingMessage, MessageStream
from .outgoing import OutgoingMessage, send_message

__all__ = 'OutgoingMessage', 'IncomingMessage', 'MessageStream', 'send_message'  # noqa: RUF022
