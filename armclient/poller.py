import asyncio
import json
from typing import Any, Awaitable, Callable, List, Optional
from urllib.parse import urljoin

from loguru import logger

from armclient.exceptions import (
    CallerCancelled,
    MissingPollingLocation,
    OperationCanceled,
    OperationFailed,
    PollAbandoned,
    PollingError,
    PollTimeout,
    TransportError,
    UnexpectedStatus,
)
from armclient.fields import lookup
from armclient.models import (
    FinalStateVia,
    LroConvention,
    OperationRequest,
    PollingConfig,
    PollSnapshot,
    ProvisioningState,
    RawResponse,
)
from armclient.responder import decode, read_raw
from armclient.retry import RetryPolicy, parse_retry_after
from armclient.sender import Sender, wait_or_cancel

POLL_STATUS_CODES = (200, 201, 202, 204)
FINAL_STATUS_CODES = (200, 201, 204)


def _parse_body(raw: RawResponse) -> Any:
    if not raw.body:
        return None
    try:
        return json.loads(raw.body)
    except ValueError:
        return None


def derive_status(
    raw: RawResponse, status_field: str, convention: LroConvention
) -> ProvisioningState:
    """Map one poll response onto a provisioning state.

    Pure: the same response always yields the same state.
    """
    value = lookup(_parse_body(raw), status_field)
    if isinstance(value, str):
        lowered = value.lower()
        if lowered in (v.lower() for v in convention.succeeded_values):
            return ProvisioningState.succeeded
        if lowered in (v.lower() for v in convention.failed_values):
            return ProvisioningState.failed
        if lowered in (v.lower() for v in convention.canceled_values):
            return ProvisioningState.canceled
        return ProvisioningState.in_progress

    if raw.status in FINAL_STATUS_CODES and convention.infer_success_without_status:
        return ProvisioningState.succeeded
    return ProvisioningState.in_progress


def default_final_state_via(method: str) -> FinalStateVia:
    if method in ("PUT", "PATCH"):
        return FinalStateVia.original_uri
    if method == "POST":
        return FinalStateVia.location
    return FinalStateVia.none


class PollFuture:
    """Handle on one in-flight remote operation.

    Owned by a single caller; observers get ``snapshot()`` copies instead of
    the live object.
    """

    def __init__(
        self,
        request: OperationRequest,
        initial_response: RawResponse,
        convention: LroConvention,
        final_state_via: FinalStateVia,
        polling_url: Optional[str],
        status_field: str,
        final_url: Optional[str],
        started_at: float,
    ):
        self.request = request
        self.convention = convention
        self.final_state_via = final_state_via
        self.polling_url = polling_url
        self.status_field = status_field
        self.final_url = final_url
        self.last_response = initial_response
        self.status = ProvisioningState.started
        self.history: List[ProvisioningState] = [ProvisioningState.started]
        self.poll_count = 0
        self.started_at = started_at

    @property
    def done(self) -> bool:
        return self.status.is_terminal

    def _advance(self, status: ProvisioningState) -> None:
        if self.done:
            raise PollingError(f"future already finished as {self.status.value}")
        self.status = status

    def _observe(self, raw: RawResponse, status: ProvisioningState) -> None:
        self._advance(status)
        self.last_response = raw
        self.history.append(status)

    def snapshot(self) -> PollSnapshot:
        return PollSnapshot(
            status=self.status,
            history=tuple(self.history),
            polling_url=self.polling_url,
            poll_count=self.poll_count,
            last_status_code=self.last_response.status,
            elapsed_time=asyncio.get_event_loop().time() - self.started_at,
        )


class Poller:
    def __init__(
        self,
        sender: Sender,
        config: Optional[PollingConfig] = None,
        policy: Optional[RetryPolicy] = None,
        on_status_change: Optional[Callable[[PollSnapshot], Awaitable[Any]]] = None,
    ):
        self.sender = sender
        self.config = config or PollingConfig()
        self.policy = policy or sender.policy
        self.on_status_change = on_status_change
        self.logger = logger

    def begin(
        self,
        request: OperationRequest,
        initial_response: RawResponse,
        convention: Optional[LroConvention] = None,
    ) -> PollFuture:
        """Create a poll future from the response to the initiating call"""
        convention = convention or LroConvention()
        raw = initial_response
        location = raw.header("Location")
        location = urljoin(request.url, location) if location else None

        polling_url = raw.header("Azure-AsyncOperation")
        status_field = convention.status_field
        if not polling_url:
            polling_url = location
        if not polling_url and convention.location_body_field:
            polling_url = lookup(_parse_body(raw), convention.location_body_field)
        if polling_url:
            polling_url = urljoin(request.url, polling_url)
        elif request.method in ("PUT", "PATCH") and raw.status in (200, 201):
            polling_url = request.url
            status_field = convention.resource_status_field
        elif raw.status == 202:
            raise MissingPollingLocation(
                f"{request.method} {request.url} returned 202 without a polling location"
            )

        final_state_via = convention.final_state_via or default_final_state_via(
            request.method
        )
        final_url = None
        if final_state_via == FinalStateVia.original_uri:
            final_url = request.url
        elif final_state_via == FinalStateVia.location:
            final_url = location

        future = PollFuture(
            request=request,
            initial_response=raw,
            convention=convention,
            final_state_via=final_state_via,
            polling_url=polling_url,
            status_field=status_field,
            final_url=final_url,
            started_at=asyncio.get_event_loop().time(),
        )

        if polling_url is None:
            # Nothing to track: the call finished synchronously.
            future._observe(raw, ProvisioningState.succeeded)
        elif raw.status in (200, 201) and polling_url == request.url:
            initial = derive_status(raw, status_field, convention)
            if initial.is_terminal:
                future._observe(raw, initial)
            else:
                future._advance(ProvisioningState.in_progress)
        else:
            future._advance(ProvisioningState.in_progress)

        self.logger.info(
            f"Started tracking {request.method} {request.url} "
            f"(polling {polling_url}, status {future.status.value})"
        )
        return future

    async def _fetch(
        self,
        request: OperationRequest,
        *,
        deadline: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RawResponse:
        """GET a status or result document, retrying failed body reads per the policy"""
        loop = asyncio.get_event_loop()
        start_time = loop.time()
        attempt = 0

        while True:
            attempt += 1
            try:
                response = await self.sender.send(
                    request, self.policy, deadline=deadline, cancel_event=cancel_event
                )
            except PollAbandoned:
                raise
            except CallerCancelled as e:
                raise PollAbandoned(
                    f"stopped waiting for {request.url}: {e.message}"
                ) from e

            try:
                return await read_raw(response)
            except TransportError as e:
                elapsed = loop.time() - start_time
                decision = self.policy.decide(None, attempt, elapsed, method=request.method)
                if not decision.retry or (
                    deadline is not None and loop.time() + decision.delay > deadline
                ):
                    self.logger.error(
                        f"Reading {request.url} failed after {attempt} attempt(s): {e.message}"
                    )
                    raise TransportError(
                        f"reading {request.url} failed after {attempt} attempt(s): {e.message}",
                        attempts=attempt,
                        stage="polling",
                    ) from e
                self.logger.info(
                    f"Reading {request.url} failed, retrying in {decision.delay:.2f}s "
                    f"(attempt {attempt})"
                )
                if await wait_or_cancel(decision.delay, cancel_event):
                    raise PollAbandoned(
                        f"stopped waiting for {request.url} while backing off"
                    ) from e

    async def poll_once(
        self,
        future: PollFuture,
        *,
        deadline: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProvisioningState:
        """Issue one status GET; a finished future is returned untouched"""
        if future.done:
            return future.status

        raw = await self._fetch(
            OperationRequest(method="GET", url=future.polling_url),
            deadline=deadline,
            cancel_event=cancel_event,
        )
        future.poll_count += 1
        if raw.status not in POLL_STATUS_CODES:
            self.logger.error(f"Polling {future.polling_url} returned {raw.status}")
            raise UnexpectedStatus(raw.status, raw.body, stage="polling")

        status = derive_status(raw, future.status_field, future.convention)
        future._observe(raw, status)
        self.logger.debug(
            f"Poll #{future.poll_count} of {future.polling_url}: {status.value}"
        )
        return status

    def _calculate_delay(self, raw: RawResponse) -> float:
        """Use the server's Retry-After hint, else the configured interval"""
        delay = parse_retry_after(raw.header("Retry-After"))
        if delay is None:
            delay = self.config.default_interval
        return max(delay, self.config.min_interval)

    async def _handle_status_change(
        self, future: PollFuture, last_status: ProvisioningState
    ) -> None:
        """Invoke the status change callback if the status has changed"""
        if last_status != future.status and self.on_status_change is not None:
            self.logger.debug(f"Operation status changed to {future.status.value}")
            await self.on_status_change(future.snapshot())

    def _raise_terminal_failure(self, future: PollFuture) -> None:
        raw = future.last_response
        error = lookup(_parse_body(raw), future.convention.error_field)
        if isinstance(error, dict):
            detail = error.get("message") or error.get("code") or json.dumps(error)
        else:
            detail = error
        if future.status == ProvisioningState.canceled:
            message = f"operation was canceled: {detail}" if detail else "operation was canceled"
            self.logger.error(f"{future.request.method} {future.request.url}: {message}")
            raise OperationCanceled(message, raw.body, error)
        message = f"operation failed: {detail}" if detail else "operation failed"
        self.logger.error(f"{future.request.method} {future.request.url}: {message}")
        raise OperationFailed(message, raw.body, error)

    async def result(
        self,
        future: PollFuture,
        target_shape: Any = None,
        *,
        deadline: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Turn a finished future into its decoded outcome"""
        if not future.done:
            raise PollingError("operation has not finished yet")
        if future.status != ProvisioningState.succeeded:
            self._raise_terminal_failure(future)

        if future.final_state_via == FinalStateVia.none:
            return None
        final_url = future.final_url
        if future.polling_url is None or final_url in (None, future.polling_url):
            return decode(future.last_response, FINAL_STATUS_CODES, target_shape)

        self.logger.debug(f"Fetching final result from {final_url}")
        raw = await self._fetch(
            OperationRequest(method="GET", url=final_url),
            deadline=deadline,
            cancel_event=cancel_event,
        )
        return decode(raw, FINAL_STATUS_CODES, target_shape)

    async def poll_until_complete(
        self,
        future: PollFuture,
        target_shape: Any = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Poll until the operation reaches a terminal state, then fetch the result"""
        loop = asyncio.get_event_loop()
        timeout = self.config.timeout
        deadline = loop.time() + timeout if timeout is not None else None
        last_status = future.status

        while not future.done:
            if cancel_event is not None and cancel_event.is_set():
                raise PollAbandoned(
                    f"stopped waiting for {future.polling_url} after {future.poll_count} poll(s)"
                )
            if self.config.max_polls is not None and future.poll_count >= self.config.max_polls:
                raise PollTimeout(
                    f"operation did not finish within {self.config.max_polls} polls"
                )

            await self.poll_once(future, deadline=deadline, cancel_event=cancel_event)
            await self._handle_status_change(future, last_status)
            last_status = future.status
            if future.done:
                break

            delay = self._calculate_delay(future.last_response)
            if deadline is not None and loop.time() + delay > deadline:
                raise PollTimeout(f"operation did not finish within {timeout} seconds")
            self.logger.debug(
                f"Operation still in progress, waiting {delay:.2f}s before next poll"
            )
            if await wait_or_cancel(delay, cancel_event):
                raise PollAbandoned(
                    f"stopped waiting for {future.polling_url} after {future.poll_count} poll(s)"
                )

        self.logger.info(
            f"{future.request.method} {future.request.url} finished as {future.status.value} "
            f"after {future.poll_count} poll(s)"
        )
        return await self.result(
            future, target_shape, deadline=deadline, cancel_event=cancel_event
        )
