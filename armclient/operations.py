"""Generic invocation engine.

Every remote call is described by an OperationSpec table entry; ArmClient
turns an entry plus parameter values into build -> send -> respond, and
hands long-running and paged operations to the Poller and Pager.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

import aiohttp
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from armclient.exceptions import annotated
from armclient.models import (
    ClientConfig,
    LroConvention,
    OperationRequest,
    PagingConvention,
    ParameterRule,
    PollingConfig,
    PollSnapshot,
)
from armclient.pager import Pager
from armclient.poller import PollFuture, Poller
from armclient.request_builder import build, validate_parameters
from armclient.responder import check_status, read_raw, respond
from armclient.retry import RetryPolicy
from armclient.sender import Sender, TokenProvider


class OperationSpec(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    method: str
    template: str
    api_version: Optional[str] = None
    expected_status: Tuple[int, ...] = (200,)
    response_shape: Any = None
    parameters: Tuple[ParameterRule, ...] = ()
    query: Tuple[str, ...] = ()
    unencoded: Tuple[str, ...] = ()
    long_running: Optional[LroConvention] = None
    paging: Optional[PagingConvention] = None
    item_shape: Any = None
    path_defaults: Dict[str, str] = Field(default_factory=dict)

    def query_params(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        for name in self.query:
            value = values.get(name)
            params[name] = None if value is None or value == "" else value
        if self.api_version is not None:
            params["api-version"] = self.api_version
        return params


class ArmClient:
    """Runs OperationSpec entries against one API endpoint"""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: Optional[ClientConfig] = None,
        policy: Optional[RetryPolicy] = None,
        polling: Optional[PollingConfig] = None,
        token_provider: Optional[TokenProvider] = None,
        on_status_change: Optional[Callable[[PollSnapshot], Awaitable[Any]]] = None,
    ):
        self.config = config or ClientConfig()
        self.sender = Sender(session, self.config, policy, token_provider)
        self.poller = Poller(self.sender, polling, on_status_change=on_status_change)
        self.logger = logger

    def _path_params(
        self, spec: OperationSpec, params: Optional[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        values: Dict[str, Any] = dict(spec.path_defaults)
        if self.config.subscription_id:
            values["subscriptionId"] = self.config.subscription_id
        if self.config.tenant_id:
            values["tenantID"] = self.config.tenant_id
        values.update(params or {})
        return values

    def prepare(
        self,
        spec: OperationSpec,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> OperationRequest:
        values = self._path_params(spec, params)
        with annotated(spec.name, "preparing"):
            validate_parameters(spec.parameters, values)
            return build(
                spec.method,
                spec.template,
                values,
                spec.query_params(values),
                body,
                base_url=self.config.base_url,
                unencoded=spec.unencoded,
            )

    async def invoke(
        self,
        spec: OperationSpec,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Run a single operation to completion and return its decoded result"""
        if spec.paging is not None:
            return await self.list(spec, params, body).collect()
        if spec.long_running is not None:
            future = await self.begin(spec, params, body, cancel_event=cancel_event)
            return await self.wait(spec, future, cancel_event=cancel_event)

        request = self.prepare(spec, params, body)
        with annotated(spec.name, "sending"):
            response = await self.sender.send(request, cancel_event=cancel_event)
        with annotated(spec.name, "responding"):
            return await respond(response, spec.expected_status, spec.response_shape)

    async def begin(
        self,
        spec: OperationSpec,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollFuture:
        """Send the initiating call of a long-running operation"""
        request = self.prepare(spec, params, body)
        with annotated(spec.name, "sending"):
            response = await self.sender.send(request, cancel_event=cancel_event)
        with annotated(spec.name, "responding"):
            raw = await read_raw(response)
            check_status(raw, spec.expected_status)
        with annotated(spec.name, "polling"):
            return self.poller.begin(request, raw, spec.long_running)

    async def wait(
        self,
        spec: OperationSpec,
        future: PollFuture,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        with annotated(spec.name, "polling"):
            return await self.poller.poll_until_complete(
                future, spec.response_shape, cancel_event=cancel_event
            )

    def list(
        self,
        spec: OperationSpec,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> Pager:
        """Return a lazy pager; nothing is sent until iteration starts"""
        request = self.prepare(spec, params, body)
        values = self._path_params(spec, params)
        query = {"api-version": spec.api_version} if spec.api_version else {}
        return Pager(
            self.sender,
            request,
            spec.paging,
            item_shape=spec.item_shape,
            expected_status_codes=spec.expected_status,
            base_url=self.config.base_url,
            path_params=values,
            query_params=query,
            operation=spec.name,
        )
