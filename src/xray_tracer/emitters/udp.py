"""
UDP emitter sending segment documents to the local collector daemon.
"""

import logging
import socket
import threading
from typing import Optional, TYPE_CHECKING

from ..config import DaemonAddress
from .interfaces import Emitter
from .utils import MAX_DATAGRAM_SIZE, serialize_segment

if TYPE_CHECKING:
    from ..models import Segment


class UDPEmitter(Emitter):
    """
    Fire-and-forget emitter for the daemon's UDP listener.

    The socket is non-blocking: a slow or absent daemon never delays the
    caller, and delivery failures are only logged.
    """

    def __init__(self, daemon_address: Optional[DaemonAddress] = None):
        """
        Initialize the UDP emitter.

        Args:
            daemon_address: Daemon endpoints; defaults to 127.0.0.1:2000
        """
        self.daemon_address = daemon_address or DaemonAddress()
        self.logger = logging.getLogger(self.__class__.__name__)
        self._socket: Optional[socket.socket] = None
        self._socket_lock = threading.Lock()

    def _get_socket(self) -> socket.socket:
        with self._socket_lock:
            if self._socket is None:
                sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
                sock.setblocking(False)
                self._socket = sock
            return self._socket

    def send_entity(self, segment: "Segment") -> bool:
        payload = serialize_segment(segment)
        if payload is None:
            return False

        if len(payload) > MAX_DATAGRAM_SIZE:
            self.logger.error(
                f"Segment '{segment.name}' ({segment.id}) is {len(payload)} bytes, "
                f"above the {MAX_DATAGRAM_SIZE} byte datagram limit; dropping it"
            )
            return False

        try:
            self._get_socket().sendto(payload, self.daemon_address.udp)
        except OSError as e:
            self.logger.error(f"Failed to send segment '{segment.name}' to {self.daemon_address.udp}: {e}")
            return False

        self.logger.debug(f"Sent segment '{segment.name}' ({segment.id}), {len(payload)} bytes")
        return True

    def close(self) -> None:
        with self._socket_lock:
            if self._socket is not None:
                self._socket.close()
                self._socket = None
