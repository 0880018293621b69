from __future__ import annotations

from typing import Iterator, Optional

import httpx

from .constants import DEFAULT_CHUNK_SIZE, DEFAULT_GATEWAY, DEFAULT_HTTP_TIMEOUT
from .errors import FetchError


def tx_url(tx_id: str, gateway: str = DEFAULT_GATEWAY) -> str:
    return f"{gateway.rstrip('/')}/{tx_id}"


class GatewaySource:
    """Sequential byte source over a gateway's ``GET /<tx_id>`` response.

    The body is streamed; nothing beyond the current chunk is buffered. The
    total length comes from ``Content-Length`` when the body is not
    content-encoded.
    """

    def __init__(
        self,
        tx_id: str,
        *,
        gateway: str = DEFAULT_GATEWAY,
        client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.tx_id = tx_id
        self.url = tx_url(tx_id, gateway)
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.length: Optional[int] = None
        self._client = client
        self._own_client = client is None
        self._response: Optional[httpx.Response] = None
        self._iter: Optional[Iterator[bytes]] = None
        self._buf = bytearray()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self._response is not None:
            return
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout, follow_redirects=True)
        try:
            request = self._client.build_request("GET", self.url)
            self._response = self._client.send(request, stream=True)
            self._response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self.close()
            raise FetchError(f"gateway returned HTTP {exc.response.status_code} for {self.url}") from exc
        except httpx.HTTPError as exc:
            self.close()
            raise FetchError(f"failed to fetch {self.url}: {exc}") from exc
        clen = self._response.headers.get("Content-Length")
        if clen and clen.isdigit() and not self._response.headers.get("Content-Encoding"):
            self.length = int(clen)
        self._iter = self._response.iter_bytes(self.chunk_size)

    def close(self):
        if self._response is not None:
            self._response.close()
            self._response = None
        if self._own_client and self._client is not None:
            self._client.close()
            self._client = None
        self._iter = None

    def seekable(self) -> bool:
        return False

    def read(self, n: int = -1) -> bytes:
        if self._iter is None:
            raise RuntimeError("GatewaySource not open")
        while n < 0 or len(self._buf) < n:
            try:
                chunk = next(self._iter)
            except StopIteration:
                break
            except httpx.HTTPError as exc:
                raise FetchError(f"transfer from {self.url} failed: {exc}") from exc
            self._buf += chunk
        if n < 0:
            n = len(self._buf)
        out = bytes(self._buf[:n])
        del self._buf[:n]
        return out
