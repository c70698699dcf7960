# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from typing import TYPE_CHECKING

from cryptography.x509 import Certificate

from relaynode.messages import ServiceMessage, SessionEnvelopedData
from relaynode.trust.private import PrivateKey

from .third_party import PeerKind, ThirdPartyEndpoint

if TYPE_CHECKING:
    from relaynode.context import Context

    from .first_party import FirstPartyEndpoint

__all__ = ('EndpointChannel',)


class EndpointChannel:
    """
    The context used to send messages from a first-party endpoint to a peer.

    Channels are not meant to be reused across messages, since the session
    key of the peer changes as messages are exchanged with it.
    """

    def __init__(self, node: 'FirstPartyEndpoint', peer: ThirdPartyEndpoint, context: 'Context') -> None:
        self.node = node
        self.peer = peer
        self.context = context

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}(node={self.node.id!r}, peer={self.peer.id!r})'

    @property
    def node_certificate(self) -> Certificate:
        return self.node.identity_certificate

    @property
    def node_private_key(self) -> PrivateKey:
        return self.node.private_key

    @property
    def outbound_address(self) -> str:
        """The address of the peer as seen by the gateway"""
        match self.peer.kind:
            case PeerKind.PUBLIC:
                return self.peer.internet_address  # pyright: ignore[reportReturnType]
            case PeerKind.PRIVATE:
                return self.peer.id

    def wrap_message_payload(self, message: ServiceMessage) -> bytes:
        """
        Encrypt the service message for the peer with its latest session key.

        The originator key generated for the message is saved as the session
        key of this node for the peer, as the peer will use it to reply.
        """
        session_key = self.peer.get_session_key(self.context)
        envelope, originator_key_pair = SessionEnvelopedData.encrypt(message.to_wire(), session_key)
        self.context.private_key_store.save_session_key(
            originator_key_pair.private_key,
            originator_key_pair.session_key.key_id,
            node_id=self.node.id,
            peer_id=self.peer.id,
        )
        return envelope.to_wire()
