import asyncio
from typing import Awaitable, Callable, Dict, Optional

import aiohttp
from loguru import logger
from yarl import URL

from armclient.exceptions import CallerCancelled, TransportError
from armclient.models import ClientConfig, OperationRequest
from armclient.retry import RetryPolicy, parse_retry_after

TokenProvider = Callable[[], Awaitable[str]]


async def wait_or_cancel(
    delay: float, cancel_event: Optional[asyncio.Event] = None
) -> bool:
    """Sleep for delay seconds; return True if the cancel event fired first"""
    if cancel_event is None:
        await asyncio.sleep(delay)
        return False
    if cancel_event.is_set():
        return True
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


class Sender:
    """Dispatches prepared requests over an injected aiohttp session.

    The session is owned by the caller so connection pooling and timeouts
    stay explicit and tests can point it at a local server.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: Optional[ClientConfig] = None,
        policy: Optional[RetryPolicy] = None,
        token_provider: Optional[TokenProvider] = None,
    ):
        self.session = session
        self.config = config or ClientConfig()
        self.policy = policy or RetryPolicy()
        self.token_provider = token_provider
        self.logger = logger

    async def _headers(self, request: OperationRequest) -> Dict[str, str]:
        headers = {"User-Agent": self.config.user_agent}
        headers.update(self.config.default_headers)
        headers.update(request.headers)
        if self.token_provider is not None:
            token = await self.token_provider()
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _send_once(self, request: OperationRequest) -> aiohttp.ClientResponse:
        headers = await self._headers(request)
        self.logger.debug(f"Sending {request.method} {request.url}")
        return await self.session.request(
            request.method,
            URL(request.url, encoded=True),
            headers=headers,
            data=request.body,
            timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
        )

    def _within_deadline(self, delay: float, deadline: Optional[float]) -> bool:
        if deadline is None:
            return True
        return asyncio.get_event_loop().time() + delay <= deadline

    async def send(
        self,
        request: OperationRequest,
        policy: Optional[RetryPolicy] = None,
        *,
        deadline: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> aiohttp.ClientResponse:
        """Send a request, retrying transient failures per the policy.

        Returns the last response untouched when no retry is warranted. The
        caller owns the returned response and must release it.
        """
        policy = policy or self.policy
        start_time = asyncio.get_event_loop().time()
        attempt = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise CallerCancelled(
                    f"{request.method} {request.url} cancelled before attempt {attempt + 1}",
                    stage="sending",
                )
            attempt += 1
            try:
                response = await self._send_once(request)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                elapsed = asyncio.get_event_loop().time() - start_time
                decision = policy.decide(None, attempt, elapsed, method=request.method)
                if not decision.retry or not self._within_deadline(decision.delay, deadline):
                    self.logger.error(
                        f"{request.method} {request.url} failed after {attempt} attempt(s): {e!r}"
                    )
                    raise TransportError(
                        f"{request.method} {request.url} failed after {attempt} attempt(s): {e!r}",
                        attempts=attempt,
                    ) from e
                self.logger.info(
                    f"Connection error on {request.method} {request.url}, "
                    f"retrying in {decision.delay:.2f}s (attempt {attempt})"
                )
                if await wait_or_cancel(decision.delay, cancel_event):
                    raise CallerCancelled(
                        f"{request.method} {request.url} cancelled while backing off",
                        stage="sending",
                    ) from e
                continue

            elapsed = asyncio.get_event_loop().time() - start_time
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            decision = policy.decide(
                response.status, attempt, elapsed, retry_after, request.method
            )
            if not decision.retry or not self._within_deadline(decision.delay, deadline):
                return response

            response.release()
            self.logger.info(
                f"{request.method} {request.url} returned {response.status}, "
                f"retrying in {decision.delay:.2f}s (attempt {attempt})"
            )
            if await wait_or_cancel(decision.delay, cancel_event):
                raise CallerCancelled(
                    f"{request.method} {request.url} cancelled while backing off",
                    stage="sending",
                )
