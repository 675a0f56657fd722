# Emitters module
from .interfaces import Emitter
from .udp import UDPEmitter
from .memory import InMemoryEmitter
from .utils import serialize_segment, parse_datagram

__all__ = [
    "Emitter",
    "UDPEmitter",
    "InMemoryEmitter",
    "serialize_segment",
    "parse_datagram"
]
