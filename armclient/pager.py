from typing import Any, AsyncIterator, Collection, Dict, Mapping, Optional
from urllib.parse import urljoin

from loguru import logger

from armclient.exceptions import DecodeError, annotated
from armclient.fields import lookup
from armclient.models import OperationRequest, Page, PagingConvention
from armclient.request_builder import build
from armclient.responder import decode_value, respond
from armclient.retry import RetryPolicy
from armclient.sender import Sender


class Pager:
    """Lazy, forward-only walk over a paged list operation.

    Each instance can be iterated once; pages are fetched only as the
    consumer advances.
    """

    def __init__(
        self,
        sender: Sender,
        first_request: OperationRequest,
        convention: Optional[PagingConvention] = None,
        *,
        item_shape: Any = None,
        expected_status_codes: Collection[int] = (200,),
        policy: Optional[RetryPolicy] = None,
        base_url: str = "",
        path_params: Optional[Mapping[str, Any]] = None,
        query_params: Optional[Mapping[str, Any]] = None,
        operation: Optional[str] = None,
    ):
        self.sender = sender
        self.first_request = first_request
        self.convention = convention or PagingConvention()
        self.item_shape = item_shape
        self.expected_status_codes = expected_status_codes
        self.policy = policy
        self.base_url = base_url
        self.path_params = dict(path_params or {})
        self.query_params = dict(query_params or {})
        self.operation = operation
        self.page_count = 0
        self._started = False
        self.logger = logger

    def _next_request(self, previous: OperationRequest, next_link: str) -> OperationRequest:
        template = self.convention.next_link_template
        if template is None:
            return OperationRequest(
                method=self.convention.next_method,
                url=urljoin(previous.url, next_link),
            )
        params = dict(self.path_params)
        params["nextLink"] = next_link
        return build(
            self.convention.next_method,
            template,
            params,
            self.query_params,
            base_url=self.base_url,
            unencoded=("nextLink",),
        )

    def _parse_page(self, data: Dict[str, Any]) -> Page:
        raw_items = lookup(data, self.convention.items_field) or []
        if not isinstance(raw_items, list):
            raise DecodeError(f"field {self.convention.items_field!r} is not a list")
        if self.item_shape is not None:
            items = [decode_value(item, self.item_shape) for item in raw_items]
        else:
            items = raw_items
        next_link = lookup(data, self.convention.next_link_field) or None
        return Page(items=items, next_link=next_link, raw=data)

    async def pages(self) -> AsyncIterator[Page]:
        if self._started:
            raise RuntimeError("a Pager can only be iterated once")
        self._started = True

        request: Optional[OperationRequest] = self.first_request
        while request is not None:
            with annotated(self.operation, "sending"):
                response = await self.sender.send(request, self.policy)
            with annotated(self.operation, "responding"):
                data = await respond(response, self.expected_status_codes, Dict[str, Any])
                page = self._parse_page(data)
            self.page_count += 1
            self.logger.debug(
                f"Fetched page {self.page_count} with {len(page.items)} item(s)"
                f"{' and a next link' if page.next_link else ''}"
            )
            yield page
            if page.next_link:
                with annotated(self.operation, "preparing"):
                    request = self._next_request(request, page.next_link)
            else:
                request = None

    async def items(self) -> AsyncIterator[Any]:
        async for page in self.pages():
            for item in page.items:
                yield item

    def __aiter__(self) -> AsyncIterator[Any]:
        return self.items()

    async def collect(self) -> list:
        return [item async for item in self.items()]
