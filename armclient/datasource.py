"""Schema-driven reads that copy remote fields into a flat state store."""

import copy
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict

from armclient.catalog import CACHE_GET, CACHE_LIST_KEYS
from armclient.exceptions import DecodeError, ResourceNotFound, UnexpectedStatus
from armclient.fields import lookup
from armclient.models import ResourceState
from armclient.operations import ArmClient, OperationSpec


def normalize_location(value: Optional[str]) -> Optional[str]:
    """'West Europe' and 'westeurope' name the same region"""
    if value is None:
        return None
    return value.replace(" ", "").lower()


def to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def to_bool(value: Any) -> Optional[bool]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def not_bool(value: Any) -> Optional[bool]:
    flag = to_bool(value)
    return None if flag is None else not flag


class Attribute(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    path: str
    transform: Optional[Callable[[Any], Any]] = None
    skip_missing: bool = False
    sensitive: bool = False
    default: Any = None

    def extract(self, data: Any) -> Any:
        value = lookup(data, self.path)
        if value is None:
            return copy.deepcopy(self.default)
        if self.transform is None:
            return value
        try:
            return self.transform(value)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"attribute {self.name!r} has unusable value {value!r}") from e


class Block(BaseModel):
    """A nested object flattened into a single-element list of attributes"""

    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    attributes: Tuple[Attribute, ...]


class SecondaryRead(BaseModel):
    model_config = ConfigDict(frozen=True)

    operation: OperationSpec
    attributes: Tuple[Attribute, ...]


class DataSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    read: OperationSpec
    attributes: Tuple[Attribute, ...] = ()
    blocks: Tuple[Block, ...] = ()
    secondary: Tuple[SecondaryRead, ...] = ()
    identity: Tuple[str, ...] = ("name", "resourceGroupName")

    def describe(self, params: Mapping[str, Any]) -> str:
        parts = [f"{key} {params.get(key)!r}" for key in self.identity if key in params]
        return f"{self.name} ({', '.join(parts)})" if parts else self.name


def _as_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True)
    return value or {}


def _copy(state: ResourceState, attributes: Tuple[Attribute, ...], data: Any) -> None:
    for attribute in attributes:
        value = attribute.extract(data)
        if value is None and attribute.skip_missing:
            continue
        state.set(attribute.name, value)
        if attribute.sensitive:
            state.sensitive.add(attribute.name)


async def read_data_source(
    client: ArmClient, source: DataSource, params: Mapping[str, Any]
) -> ResourceState:
    """Read a remote resource and flatten it into a ResourceState"""
    try:
        data = _as_dict(await client.invoke(source.read, params))
    except UnexpectedStatus as e:
        if e.status == 404:
            raise ResourceNotFound(
                f"{source.describe(params)} was not found",
                e.body,
                operation=source.read.name,
            ) from e
        raise

    state = ResourceState(id=lookup(data, "id"))
    _copy(state, source.attributes, data)

    for block in source.blocks:
        nested = lookup(data, block.path)
        if nested is None:
            state.set(block.name, [])
            continue
        flattened = ResourceState()
        _copy(flattened, block.attributes, nested)
        state.set(block.name, [flattened.attributes])
        state.sensitive.update(f"{block.name}.{key}" for key in flattened.sensitive)

    for secondary in source.secondary:
        result = _as_dict(await client.invoke(secondary.operation, params))
        _copy(state, secondary.attributes, result)

    logger.info(f"Read {source.describe(params)} into {len(state.attributes)} attribute(s)")
    return state


CACHE_DATA_SOURCE = DataSource(
    name="Redis instance",
    read=CACHE_GET,
    attributes=(
        Attribute(name="location", path="location", transform=normalize_location),
        Attribute(name="zones", path="zones", skip_missing=True),
        Attribute(name="capacity", path="sku.capacity"),
        Attribute(name="family", path="sku.family"),
        Attribute(name="sku_name", path="sku.name"),
        Attribute(name="ssl_port", path="properties.sslPort"),
        Attribute(name="hostname", path="properties.hostName"),
        Attribute(name="minimum_tls_version", path="properties.minimumTlsVersion", default=""),
        Attribute(name="port", path="properties.port"),
        Attribute(name="enable_non_ssl_port", path="properties.enableNonSslPort"),
        Attribute(name="shard_count", path="properties.shardCount", skip_missing=True),
        Attribute(name="private_static_ip_address", path="properties.staticIP"),
        Attribute(name="subnet_id", path="properties.subnetId"),
        Attribute(name="tags", path="tags", default={}),
    ),
    blocks=(
        Block(
            name="redis_configuration",
            path="properties.redisConfiguration",
            attributes=(
                Attribute(name="maxclients", path="maxclients", transform=to_int),
                Attribute(name="maxmemory_delta", path="maxmemory-delta", transform=to_int),
                Attribute(name="maxmemory_reserved", path="maxmemory-reserved", transform=to_int),
                Attribute(name="maxmemory_policy", path="maxmemory-policy"),
                Attribute(
                    name="maxfragmentationmemory_reserved",
                    path="maxfragmentationmemory-reserved",
                    transform=to_int,
                ),
                Attribute(name="rdb_backup_enabled", path="rdb-backup-enabled", transform=to_bool),
                Attribute(name="rdb_backup_frequency", path="rdb-backup-frequency", transform=to_int),
                Attribute(
                    name="rdb_backup_max_snapshot_count",
                    path="rdb-backup-max-snapshot-count",
                    transform=to_int,
                ),
                Attribute(
                    name="rdb_storage_connection_string",
                    path="rdb-storage-connection-string",
                    sensitive=True,
                ),
                Attribute(name="notify_keyspace_events", path="notify-keyspace-events"),
                Attribute(name="aof_backup_enabled", path="aof-backup-enabled", transform=to_bool),
                Attribute(
                    name="aof_storage_connection_string_0",
                    path="aof-storage-connection-string-0",
                    sensitive=True,
                ),
                Attribute(
                    name="aof_storage_connection_string_1",
                    path="aof-storage-connection-string-1",
                    sensitive=True,
                ),
                Attribute(
                    name="enable_authentication",
                    path="authnotrequired",
                    transform=not_bool,
                    default=True,
                ),
            ),
        ),
    ),
    secondary=(
        SecondaryRead(
            operation=CACHE_LIST_KEYS,
            attributes=(
                Attribute(name="primary_access_key", path="primaryKey", sensitive=True),
                Attribute(name="secondary_access_key", path="secondaryKey", sensitive=True),
            ),
        ),
    ),
)
