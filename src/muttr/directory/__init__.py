"""Pod (directory server) client: signed requests, tokens, inboxes and push."""

from .auth import RequestAuthenticator, next_nonce
from .client import DirectoryClient, DirectoryConfig
from .models import Alias, InboxNotification, MessageDescriptor, Playback, ReceivedMessage, Token
from .subscription import InboxSubscription, parse_frame

__all__ = [
    "Alias",
    "DirectoryClient",
    "DirectoryConfig",
    "InboxNotification",
    "InboxSubscription",
    "MessageDescriptor",
    "Playback",
    "ReceivedMessage",
    "RequestAuthenticator",
    "Token",
    "next_nonce",
    "parse_frame",
]
