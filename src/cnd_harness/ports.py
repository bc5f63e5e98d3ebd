# ports.py
# Free TCP port allocation for locally spawned nodes.
#
# Probing a port and the child process binding it are two separate events.
# Another process on the host can grab the port in between; that race is
# accepted. Inside one harness process no port is ever handed out twice.

import asyncio
import socket


def _can_bind(port: int, host: str) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def _ephemeral_port(host: str) -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


class PortAllocator:
    """
    Hands out free ports, preferring the one a node conventionally uses.

    One allocator should be shared by every instance started in a run so the
    bookkeeping covers all concurrent starts.
    """

    def __init__(self, host: str = "127.0.0.1") -> None:
        self._host = host
        self._lock = asyncio.Lock()
        self._allocated: set[int] = set()

    async def allocate(self, preferred: int | None = None) -> int:
        async with self._lock:
            if preferred and preferred not in self._allocated and _can_bind(preferred, self._host):
                port = preferred
            else:
                port = _ephemeral_port(self._host)
                while port in self._allocated:
                    port = _ephemeral_port(self._host)
            self._allocated.add(port)
            return port

    def release(self, port: int) -> None:
        self._allocated.discard(port)

    @property
    def allocated(self) -> frozenset[int]:
        return frozenset(self._allocated)
