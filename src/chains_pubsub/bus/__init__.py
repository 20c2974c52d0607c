"""Message-bus abstraction: topic handles selected by URI scheme."""

from chains_pubsub.bus.base import Message, TopicHandle, TopicOpener
from chains_pubsub.bus.registry import open_topic, register_scheme, registered_schemes

__all__ = [
    "Message",
    "TopicHandle",
    "TopicOpener",
    "open_topic",
    "register_scheme",
    "registered_schemes",
]
