import itertools
import json
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, NamedTuple, Optional, Tuple

from aiohttp import web
from loguru import logger


class ScriptedResponse(NamedTuple):
    status: int
    body: Any = None
    headers: Dict[str, str] = {}


class RecordedRequest(NamedTuple):
    method: str
    path: str
    query: Dict[str, str]
    headers: Dict[str, str]
    body: bytes


class FakeArmServer:
    """In-process stand-in for a resource-management API.

    Resources are stored by path. PUT/PATCH either finish immediately or
    start an asynchronous operation that completes after ``async_polls``
    status checks. Individual (method, path) pairs can be scripted with
    exact response sequences; the last scripted response repeats.
    """

    def __init__(self, async_polls: int = 0, page_size: int = 2):
        self.async_polls = async_polls
        self.page_size = page_size
        self.resources: Dict[str, Dict[str, Any]] = {}
        self.operations: Dict[str, Dict[str, Any]] = {}
        self.scripts: Dict[Tuple[str, str], Deque[ScriptedResponse]] = defaultdict(deque)
        self.requests: List[RecordedRequest] = []
        self.graph_objects: Dict[str, List[Dict[str, Any]]] = {}
        self._ids = itertools.count(1)
        self.app = web.Application()
        self.app.router.add_route("*", "/{tail:.*}", self.handle)
        self.logger = logger
        self.runner: Optional[web.AppRunner] = None

    def script(self, method: str, path: str, *responses: ScriptedResponse) -> None:
        self.scripts[(method.upper(), path)].extend(responses)

    def requests_to(self, path: str, method: Optional[str] = None) -> List[RecordedRequest]:
        return [
            r for r in self.requests
            if r.path == path and (method is None or r.method == method.upper())
        ]

    def _respond(self, scripted: ScriptedResponse) -> web.Response:
        if scripted.body is None:
            return web.Response(status=scripted.status, headers=scripted.headers)
        if isinstance(scripted.body, str):
            return web.Response(
                status=scripted.status, text=scripted.body, headers=scripted.headers
            )
        if isinstance(scripted.body, bytes):
            return web.Response(
                status=scripted.status, body=scripted.body, headers=scripted.headers
            )
        return web.json_response(
            scripted.body, status=scripted.status, headers=scripted.headers
        )

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.read()
        self.requests.append(
            RecordedRequest(
                method=request.method,
                path=request.path,
                query=dict(request.query),
                headers=dict(request.headers),
                body=body,
            )
        )
        queue = self.scripts.get((request.method, request.path))
        if queue:
            scripted = queue.popleft() if len(queue) > 1 else queue[0]
            self.logger.info(f"Scripted {scripted.status} for {request.method} {request.path}")
            return self._respond(scripted)

        if request.path.startswith("/operations/"):
            return self._operation_status(request.path.rsplit("/", 1)[-1])
        if request.path.endswith("/listKeys") and request.method == "POST":
            return web.json_response({"primaryKey": "primary", "secondaryKey": "secondary"})
        if request.path.endswith("/getObjectsByObjectIds") and request.method == "POST":
            tenant = request.path.split("/")[1]
            payload = json.loads(body or b"{}")
            self.graph_objects[tenant] = [
                {"objectId": object_id, "objectType": "User"}
                for object_id in payload.get("objectIds", [])
            ]
            return self._graph_page(tenant, 0)
        if "/directoryObjects/" in request.path and request.method == "POST":
            tenant = request.path.split("/")[1]
            return self._graph_page(tenant, int(request.query.get("$skiptoken", "0")))

        if request.method in ("PUT", "PATCH"):
            return await self._put(request, body)
        if request.method == "GET":
            return self._get(request)
        if request.method == "DELETE":
            existed = self.resources.pop(request.path, None) is not None
            return web.Response(status=200 if existed else 204)
        return web.json_response({"error": {"code": "NotSupported"}}, status=405)

    async def _put(self, request: web.Request, body: bytes) -> web.Response:
        payload = json.loads(body or b"{}")
        existing = self.resources.get(request.path, {})
        if request.method == "PATCH":
            merged = dict(existing)
            merged.update(payload)
            payload = merged
        resource = dict(payload)
        resource["id"] = request.path
        resource["name"] = request.path.rsplit("/", 1)[-1]
        properties = dict(resource.get("properties") or {})

        if self.async_polls <= 0:
            properties["provisioningState"] = "Succeeded"
            resource["properties"] = properties
            self.resources[request.path] = resource
            self.logger.info(f"Stored {request.path}")
            return web.json_response(resource, status=200 if existing else 201)

        properties["provisioningState"] = "Updating" if existing else "Creating"
        resource["properties"] = properties
        self.resources[request.path] = resource
        op_id = str(next(self._ids))
        self.operations[op_id] = {"path": request.path, "remaining": self.async_polls}
        async_url = f"{request.url.origin()}/operations/{op_id}"
        self.logger.info(f"Started operation {op_id} for {request.path}")
        return web.json_response(
            resource,
            status=201 if not existing else 200,
            headers={"Azure-AsyncOperation": async_url, "Retry-After": "0"},
        )

    def _operation_status(self, op_id: str) -> web.Response:
        op = self.operations.get(op_id)
        if op is None:
            return web.json_response({"error": {"code": "NotFound"}}, status=404)
        if op["remaining"] > 0:
            op["remaining"] -= 1
            self.logger.info(f"Operation {op_id} in progress ({op['remaining']} left)")
            return web.json_response({"status": "InProgress"}, headers={"Retry-After": "0"})
        resource = self.resources.get(op["path"])
        if resource is not None:
            resource["properties"]["provisioningState"] = "Succeeded"
        self.logger.info(f"Operation {op_id} succeeded")
        return web.json_response({"status": "Succeeded"})

    def _get(self, request: web.Request) -> web.Response:
        resource = self.resources.get(request.path)
        if resource is not None:
            return web.json_response(resource)

        prefix = request.path.rstrip("/") + "/"
        children = [
            value for key, value in sorted(self.resources.items())
            if key.startswith(prefix) and "/" not in key[len(prefix):]
        ]
        if not children:
            return web.json_response(
                {"error": {"code": "ResourceNotFound", "message": f"{request.path} not found"}},
                status=404,
            )

        offset = int(request.query.get("$skiptoken", "0"))
        page = {"value": children[offset:offset + self.page_size]}
        if offset + self.page_size < len(children):
            page["nextLink"] = str(
                request.url.update_query({"$skiptoken": str(offset + self.page_size)})
            )
        return web.json_response(page)

    def _graph_page(self, tenant: str, offset: int) -> web.Response:
        objects = self.graph_objects.get(tenant, [])
        page: Dict[str, Any] = {"value": objects[offset:offset + self.page_size]}
        if offset + self.page_size < len(objects):
            page["odata.nextLink"] = (
                "directoryObjects/$/Microsoft.DirectoryServices.User"
                f"?$skiptoken={offset + self.page_size}"
            )
        return web.json_response(page)

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
