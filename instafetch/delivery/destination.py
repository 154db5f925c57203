from __future__ import annotations

from abc import ABC, abstractmethod

from aiohttp import web


class Destination(ABC):
    """Where delivered bytes go. Headers are committed by the first `begin`."""

    @property
    @abstractmethod
    def headers_sent(self) -> bool: ...

    @abstractmethod
    async def begin(self, content_type: str, filename: str) -> None: ...

    @abstractmethod
    async def write(self, chunk: bytes) -> None: ...

    @abstractmethod
    async def finish(self) -> None: ...


class ResponseDestination(Destination):
    """An aiohttp StreamResponse prepared lazily on the first `begin`."""

    def __init__(self, request: web.Request) -> None:
        self._request = request
        self.response = web.StreamResponse()

    @property
    def headers_sent(self) -> bool:
        return self.response.prepared

    async def begin(self, content_type: str, filename: str) -> None:
        self.response.content_type = content_type
        self.response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
        await self.response.prepare(self._request)

    async def write(self, chunk: bytes) -> None:
        await self.response.write(chunk)

    async def finish(self) -> None:
        await self.response.write_eof()
