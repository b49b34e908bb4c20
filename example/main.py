import asyncio

import aiohttp

from armclient.catalog import ELASTIC_POOL_CREATE_OR_UPDATE, ELASTIC_POOL_LIST_BY_SERVER
from armclient.datasource import CACHE_DATA_SOURCE, read_data_source
from armclient.exceptions import ResourceNotFound
from armclient.models import ClientConfig, PollingConfig
from armclient.operations import ArmClient
from fake_arm_server import FakeArmServer


async def status_changed(snapshot):
    print(f"Status changed to: {snapshot.status.value}")
    print(f"Polls so far: {snapshot.poll_count}, elapsed: {snapshot.elapsed_time:.6f}s")


async def main():
    PORT = 8000
    server = FakeArmServer(async_polls=3)
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    config = ClientConfig(base_url=f"http://localhost:{PORT}", subscription_id="sub")
    polling = PollingConfig(default_interval=1.0, min_interval=0.5, timeout=60.0)
    params = {"resourceGroupName": "rg", "serverName": "srv"}

    async with aiohttp.ClientSession() as session:
        client = ArmClient(session, config, polling=polling, on_status_change=status_changed)
        try:
            for name in ("pool-a", "pool-b", "pool-c"):
                pool = await client.invoke(
                    ELASTIC_POOL_CREATE_OR_UPDATE,
                    dict(params, elasticPoolName=name),
                    {"location": "West Europe", "properties": {"dtu": 100}},
                )
                print(f"Created {pool.name}: {pool.properties['provisioningState']}")

            async for pool in client.list(ELASTIC_POOL_LIST_BY_SERVER, params):
                print(f"Listed {pool.name}")

            state = await read_data_source(
                client, CACHE_DATA_SOURCE, {"name": "cache1", "resourceGroupName": "rg"}
            )
            print(state.redacted())
        except ResourceNotFound as e:
            print(f"Lookup failed: {e}")
        except TimeoutError as e:
            print(f"Polling timed out: {e}")
        except Exception as e:
            print(f"Error occurred: {e}")

    await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
