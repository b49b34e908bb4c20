import asyncio
from functools import lru_cache
from typing import Any, Collection, Optional

import aiohttp
from loguru import logger
from pydantic import TypeAdapter, ValidationError

from armclient.exceptions import DecodeError, TransportError, UnexpectedStatus
from armclient.models import RawResponse


@lru_cache(maxsize=None)
def _adapter(shape: Any) -> TypeAdapter:
    return TypeAdapter(shape)


async def read_raw(response: aiohttp.ClientResponse) -> RawResponse:
    """Consume a response body into a RawResponse, releasing it exactly once"""
    try:
        body = await response.read()
        return RawResponse(
            status=response.status, headers=dict(response.headers), body=body
        )
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise TransportError(
            f"failed reading response body: {e!r}", stage="responding"
        ) from e
    finally:
        response.release()


def check_status(raw: RawResponse, expected_status_codes: Collection[int]) -> None:
    if raw.status not in expected_status_codes:
        logger.error(
            f"Unexpected status {raw.status} (expected {sorted(expected_status_codes)})"
        )
        raise UnexpectedStatus(raw.status, raw.body)


def decode_value(value: Any, target_shape: Any) -> Any:
    """Validate an already-parsed JSON value against a target shape"""
    try:
        return _adapter(target_shape).validate_python(value)
    except ValidationError as e:
        raise DecodeError(f"payload does not match {target_shape!r}: {e}") from e


def decode(
    raw: RawResponse, expected_status_codes: Collection[int], target_shape: Any = None
) -> Any:
    check_status(raw, expected_status_codes)
    if target_shape is None:
        return None
    if not raw.body and raw.status == 204:
        return None
    try:
        return _adapter(target_shape).validate_json(raw.body)
    except ValidationError as e:
        logger.error(f"Failed to decode {raw.status} response: {raw.text[:200]}")
        raise DecodeError(
            f"malformed {raw.status} payload for {target_shape!r}: {e}", raw.body
        ) from e


async def respond(
    response: aiohttp.ClientResponse,
    expected_status_codes: Collection[int],
    target_shape: Optional[Any] = None,
) -> Any:
    """Check the status, decode the body into target_shape, always release"""
    raw = await read_raw(response)
    return decode(raw, expected_status_codes, target_shape)
