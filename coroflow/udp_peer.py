"""UDP peers that send datagrams and, when bound, receive them through an IoScheduler."""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from typing import Optional, Union

from coroflow.io_scheduler import IoScheduler
from coroflow.poll import PollOp, PollStatus

Buffer = Union[bytes, bytearray, memoryview]


@dataclass(frozen=True, order=True)
class PeerInfo:
    """The address and port of a UDP peer; the address is normalised on creation."""

    address: str = "127.0.0.1"
    port: int = 8080

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", str(ipaddress.ip_address(self.address)))
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"port out of range: {self.port}")

    @property
    def family(self) -> int:
        """The socket address family matching the address."""
        version = ipaddress.ip_address(self.address).version
        return socket.AF_INET6 if version == 6 else socket.AF_INET


class UdpNotBoundError(RuntimeError):
    """Raised when receiving on a peer that was not bound to a local address."""


class UdpPeer:
    """A non-blocking UDP socket driven by an IoScheduler.

    Without ``bind_info`` the peer can only send.  With it the peer binds locally and can
    also receive.
    """

    def __init__(
        self,
        scheduler: IoScheduler,
        bind_info: Optional[PeerInfo] = None,
        family: int = socket.AF_INET,
    ):
        self._scheduler = scheduler
        self._bound = bind_info is not None
        if bind_info is not None:
            family = bind_info.family
        self._socket = socket.socket(family, socket.SOCK_DGRAM)
        try:
            self._socket.setblocking(False)
            if bind_info is not None:
                self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                self._socket.bind((bind_info.address, bind_info.port))
        except OSError:
            self._socket.close()
            raise

    async def poll(self, op: PollOp = PollOp.READ, timeout: float = 0.0) -> PollStatus:
        """Wait for the socket to be ready for ``op``; a timeout of zero waits indefinitely.

        Polling for read on a peer that did not bind will never see data.
        """
        return await self._scheduler.poll(self._socket, op, timeout)

    def sendto(self, peer_info: PeerInfo, data: Buffer) -> bytes:
        """Send ``data`` to ``peer_info`` and return the bytes at its end that were not sent.

        Raises OSError if the send fails.
        """
        if not data:
            return b""
        view = memoryview(data)
        sent = self._socket.sendto(view, (peer_info.address, peer_info.port))
        return bytes(view[sent:])

    def recvfrom(self, size: int) -> tuple[PeerInfo, bytes]:
        """Receive one datagram of at most ``size`` bytes and return its sender and data.

        Raises UdpNotBoundError if the peer did not bind locally, BlockingIOError when no
        datagram is waiting, and OSError on other failures.
        """
        if not self._bound:
            raise UdpNotBoundError("udp peer must be bound locally to receive")
        data, address = self._socket.recvfrom(size)
        host, port = address[0], address[1]
        return PeerInfo(address=host, port=port), data

    def close(self) -> None:
        """Close the socket; closing twice is harmless."""
        self._socket.close()

    def __enter__(self) -> "UdpPeer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()