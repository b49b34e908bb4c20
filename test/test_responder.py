from typing import Any, Dict, List, Optional

import aiohttp
import pytest
from pydantic import BaseModel

from armclient.exceptions import DecodeError, TransportError, UnexpectedStatus
from armclient.models import RawResponse
from armclient.responder import check_status, decode, read_raw, respond


class StubResponse:
    """Stands in for aiohttp.ClientResponse and counts releases."""

    def __init__(
        self,
        status: int,
        body: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
        read_error: Optional[Exception] = None,
    ):
        self.status = status
        self.body = body
        self.headers = headers or {}
        self.read_error = read_error
        self.release_count = 0

    async def read(self) -> bytes:
        if self.read_error is not None:
            raise self.read_error
        return self.body

    def release(self) -> None:
        self.release_count += 1


class Pool(BaseModel):
    name: str
    capacity: int


@pytest.mark.asyncio
async def test_unexpected_status_keeps_body_and_closes_stream():
    response = StubResponse(404, b'{"error": {"code": "ResourceNotFound"}}')

    with pytest.raises(UnexpectedStatus) as exc_info:
        await respond(response, (200,), Pool)

    assert exc_info.value.status == 404
    assert exc_info.value.body == b'{"error": {"code": "ResourceNotFound"}}'
    assert "ResourceNotFound" in str(exc_info.value)
    assert exc_info.value.stage == "responding"
    assert response.release_count == 1


@pytest.mark.asyncio
async def test_decodes_expected_status():
    response = StubResponse(200, b'{"name": "pool1", "capacity": 5, "extra": true}')

    pool = await respond(response, (200,), Pool)

    assert pool == Pool(name="pool1", capacity=5)
    assert response.release_count == 1


@pytest.mark.asyncio
async def test_generic_shapes():
    response = StubResponse(200, b'[{"name": "a"}, {"name": "b"}]')
    assert await respond(response, (200,), List[Dict[str, Any]]) == [{"name": "a"}, {"name": "b"}]

    response = StubResponse(200, b'"https://hooks.example/abc"')
    assert await respond(response, (200,), str) == "https://hooks.example/abc"


@pytest.mark.asyncio
async def test_malformed_body():
    response = StubResponse(200, b'{"name": "pool1", "capacity": "lots"}')

    with pytest.raises(DecodeError) as exc_info:
        await respond(response, (200,), Pool)

    assert exc_info.value.body == b'{"name": "pool1", "capacity": "lots"}'
    assert response.release_count == 1


@pytest.mark.asyncio
async def test_body_ignored_without_shape():
    response = StubResponse(200, b"not json at all")
    assert await respond(response, (200, 204)) is None
    assert response.release_count == 1


@pytest.mark.asyncio
async def test_read_failure_is_a_transport_error():
    response = StubResponse(200, read_error=aiohttp.ClientPayloadError("truncated"))

    with pytest.raises(TransportError) as exc_info:
        await read_raw(response)
    assert exc_info.value.stage == "responding"
    assert response.release_count == 1


@pytest.mark.asyncio
async def test_read_raw_copies_headers():
    response = StubResponse(202, b"", {"Location": "/op/1", "Retry-After": "3"})

    raw = await read_raw(response)

    assert raw.status == 202
    assert raw.header("location") == "/op/1"
    assert raw.header("RETRY-AFTER") == "3"
    assert raw.header("Azure-AsyncOperation") is None


def test_no_content_decodes_to_none():
    raw = RawResponse(status=204)
    assert decode(raw, (200, 204), Pool) is None


def test_check_status():
    check_status(RawResponse(status=201), (200, 201))
    with pytest.raises(UnexpectedStatus):
        check_status(RawResponse(status=500, body=b"boom"), (200, 201))
