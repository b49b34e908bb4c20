from typing import AsyncGenerator, Tuple

import aiohttp
import pytest
import pytest_asyncio

from armclient.models import ClientConfig, PollingConfig
from armclient.retry import RetryPolicy
from fake_arm_server import FakeArmServer

BASE_URL_TEMPLATE = "http://localhost:{}"


@pytest_asyncio.fixture
async def server(unused_tcp_port_factory) -> AsyncGenerator[Tuple[FakeArmServer, int], None]:
    """Start and yield a FakeArmServer instance on a random port."""
    port = unused_tcp_port_factory()
    server_instance = FakeArmServer()
    await server_instance.start(port=port)
    try:
        yield server_instance, port
    finally:
        await server_instance.stop()


@pytest_asyncio.fixture
async def session() -> AsyncGenerator[aiohttp.ClientSession, None]:
    async with aiohttp.ClientSession() as client_session:
        yield client_session


@pytest.fixture
def config(server) -> ClientConfig:
    _, port = server
    return ClientConfig(
        base_url=BASE_URL_TEMPLATE.format(port),
        subscription_id="sub",
        tenant_id="tenant",
    )


@pytest.fixture
def polling() -> PollingConfig:
    """Fast polling so tests don't sit in sleeps."""
    return PollingConfig(default_interval=0.01, min_interval=0.0, timeout=10.0)


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(initial_delay=0.01, max_delay=0.05)
