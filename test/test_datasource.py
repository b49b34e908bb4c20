import pytest

from armclient.datasource import (
    CACHE_DATA_SOURCE,
    Attribute,
    normalize_location,
    not_bool,
    read_data_source,
    to_bool,
    to_int,
)
from armclient.exceptions import DecodeError, ParameterValidationError, ResourceNotFound
from armclient.operations import ArmClient

CACHE_PATH = "/subscriptions/sub/resourceGroups/rg/providers/Microsoft.Cache/Redis/cache1"
PARAMS = {"name": "cache1", "resourceGroupName": "rg"}


def _redis(**redis_configuration):
    return {
        "id": CACHE_PATH,
        "name": "cache1",
        "location": "West Europe",
        "zones": ["1"],
        "sku": {"capacity": 1, "family": "C", "name": "Standard"},
        "tags": {"env": "test"},
        "properties": {
            "sslPort": 6380,
            "port": 6379,
            "hostName": "cache1.redis.cache.windows.net",
            "enableNonSslPort": False,
            "minimumTlsVersion": "1.2",
            "redisConfiguration": redis_configuration,
        },
    }


@pytest.mark.asyncio
async def test_reads_redis_instance(server, session, config, polling, policy):
    server_instance, _ = server
    server_instance.resources[CACHE_PATH] = _redis(
        **{
            "maxclients": "1000",
            "maxmemory-policy": "volatile-lru",
            "rdb-backup-enabled": "true",
            "rdb-storage-connection-string": "DefaultEndpointsProtocol=https;AccountKey=k",
            "authnotrequired": "true",
        }
    )
    client = ArmClient(session, config, policy, polling)

    state = await read_data_source(client, CACHE_DATA_SOURCE, PARAMS)

    assert state.id == CACHE_PATH
    assert state.get("location") == "westeurope"
    assert state.get("capacity") == 1
    assert state.get("sku_name") == "Standard"
    assert state.get("ssl_port") == 6380
    assert state.get("hostname") == "cache1.redis.cache.windows.net"
    assert state.get("zones") == ["1"]
    assert state.get("tags") == {"env": "test"}
    assert "shard_count" not in state.attributes

    (redis_configuration,) = state.get("redis_configuration")
    assert redis_configuration["maxclients"] == 1000
    assert redis_configuration["maxmemory_policy"] == "volatile-lru"
    assert redis_configuration["rdb_backup_enabled"] is True
    assert redis_configuration["enable_authentication"] is False
    assert redis_configuration["maxmemory_reserved"] is None

    assert state.get("primary_access_key") == "primary"
    assert state.get("secondary_access_key") == "secondary"
    redacted = state.redacted()
    assert redacted["primary_access_key"] == "(sensitive)"
    assert redacted["hostname"] == "cache1.redis.cache.windows.net"
    assert "redis_configuration.rdb_storage_connection_string" in state.sensitive

    get, list_keys = server_instance.requests
    assert get.method == "GET"
    assert get.query == {"api-version": "2018-03-01"}
    assert list_keys.method == "POST"
    assert list_keys.path == f"{CACHE_PATH}/listKeys"


@pytest.mark.asyncio
async def test_defaults_for_missing_fields(server, session, config, polling, policy):
    server_instance, _ = server
    resource = _redis()
    del resource["properties"]["redisConfiguration"]
    del resource["properties"]["minimumTlsVersion"]
    del resource["tags"]
    server_instance.resources[CACHE_PATH] = resource
    client = ArmClient(session, config, policy, polling)

    state = await read_data_source(client, CACHE_DATA_SOURCE, PARAMS)

    assert state.get("redis_configuration") == []
    assert state.get("minimum_tls_version") == ""
    assert state.get("tags") == {}


@pytest.mark.asyncio
async def test_authentication_enabled_by_default(server, session, config, polling, policy):
    server_instance, _ = server
    server_instance.resources[CACHE_PATH] = _redis(maxclients="256")
    client = ArmClient(session, config, policy, polling)

    state = await read_data_source(client, CACHE_DATA_SOURCE, PARAMS)

    (redis_configuration,) = state.get("redis_configuration")
    assert redis_configuration["enable_authentication"] is True


@pytest.mark.asyncio
async def test_missing_instance(server, session, config, polling, policy):
    server_instance, _ = server
    client = ArmClient(session, config, policy, polling)

    with pytest.raises(ResourceNotFound) as exc_info:
        await read_data_source(client, CACHE_DATA_SOURCE, PARAMS)

    assert exc_info.value.status == 404
    assert "Redis instance (name 'cache1', resourceGroupName 'rg') was not found" in str(
        exc_info.value
    )
    assert len(server_instance.requests) == 1


@pytest.mark.asyncio
async def test_unusable_value(server, session, config, polling, policy):
    server_instance, _ = server
    server_instance.resources[CACHE_PATH] = _redis(maxclients="lots")
    client = ArmClient(session, config, policy, polling)

    with pytest.raises(DecodeError, match="maxclients"):
        await read_data_source(client, CACHE_DATA_SOURCE, PARAMS)


@pytest.mark.asyncio
async def test_invalid_resource_group(server, session, config, polling, policy):
    server_instance, _ = server
    client = ArmClient(session, config, policy, polling)

    with pytest.raises(ParameterValidationError):
        await read_data_source(
            client, CACHE_DATA_SOURCE, {"name": "cache1", "resourceGroupName": "r g"}
        )
    assert server_instance.requests == []


def test_value_helpers():
    assert normalize_location("West Europe") == "westeurope"
    assert normalize_location(None) is None
    assert to_int("42") == 42
    assert to_int("") is None
    assert to_bool("True") is True
    assert to_bool("no") is False
    assert to_bool(None) is None
    assert not_bool("true") is False
    assert not_bool(None) is None


def test_attribute_default_is_not_shared():
    attribute = Attribute(name="tags", path="tags", default={})
    first = attribute.extract({})
    first["added"] = "x"
    assert attribute.extract({}) == {}
