"""Operation table for the services armclient talks to.

Each entry replaces a generated preparer/sender/responder triple. Adding an
operation means adding a row here, not writing a client class.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from armclient.models import LroConvention, PagingConvention, ParameterRule
from armclient.operations import OperationSpec

RESOURCE_GROUP_RULE = ParameterRule(name="resourceGroupName", pattern=r"^[-\w\._]+$")

AUTOMATION_API_VERSION = "2015-10-31"
SQL_API_VERSION = "2014-04-01"
SQL_PREVIEW_API_VERSION = "2015-05-01-preview"
GRAPH_API_VERSION = "1.6"
CACHE_API_VERSION = "2018-03-01"


class Resource(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    location: Optional[str] = None
    tags: Dict[str, str] = Field(default_factory=dict)
    properties: Dict[str, Any] = Field(default_factory=dict)


class ServerUsage(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = None
    resource_name: Optional[str] = Field(default=None, alias="resourceName")
    display_name: Optional[str] = Field(default=None, alias="displayName")
    current_value: Optional[float] = Field(default=None, alias="currentValue")
    limit: Optional[float] = None
    unit: Optional[str] = None


class AccessKeys(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    primary_key: Optional[str] = Field(default=None, alias="primaryKey")
    secondary_key: Optional[str] = Field(default=None, alias="secondaryKey")


LIST = PagingConvention()

_WEBHOOK = (
    "/subscriptions/{subscriptionId}/resourceGroups/{resourceGroupName}"
    "/providers/Microsoft.Automation/automationAccounts/{automationAccountName}/webhooks"
)
_SQL_SERVER = (
    "/subscriptions/{subscriptionId}/resourceGroups/{resourceGroupName}"
    "/providers/Microsoft.Sql/servers/{serverName}"
)
_ELASTIC_POOL = _SQL_SERVER + "/elasticPools/{elasticPoolName}"
_SYNC_MEMBERS = _SQL_SERVER + "/databases/{databaseName}/syncGroups/{syncGroupName}/syncMembers"
_LTR_POLICIES = _SQL_SERVER + "/databases/{databaseName}/backupLongTermRetentionPolicies"
_CACHE = (
    "/subscriptions/{subscriptionId}/resourceGroups/{resourceGroupName}"
    "/providers/Microsoft.Cache/Redis/{name}"
)


def _automation(name: str, method: str, template: str, **kwargs: Any) -> OperationSpec:
    return OperationSpec(
        name=f"automation.Webhook.{name}",
        method=method,
        template=template,
        api_version=AUTOMATION_API_VERSION,
        parameters=(RESOURCE_GROUP_RULE,),
        **kwargs,
    )


WEBHOOK_CREATE_OR_UPDATE = _automation(
    "CreateOrUpdate", "PUT", _WEBHOOK + "/{webhookName}",
    expected_status=(200, 201), response_shape=Resource,
)
WEBHOOK_DELETE = _automation("Delete", "DELETE", _WEBHOOK + "/{webhookName}")
WEBHOOK_GENERATE_URI = _automation(
    "GenerateURI", "POST", _WEBHOOK + "/generateUri", response_shape=str
)
WEBHOOK_GET = _automation("Get", "GET", _WEBHOOK + "/{webhookName}", response_shape=Resource)
WEBHOOK_LIST_BY_AUTOMATION_ACCOUNT = _automation(
    "ListByAutomationAccount", "GET", _WEBHOOK,
    query=("$filter",), paging=LIST, item_shape=Resource,
)
WEBHOOK_UPDATE = _automation(
    "Update", "PATCH", _WEBHOOK + "/{webhookName}", response_shape=Resource
)

ELASTIC_POOL_CREATE_OR_UPDATE = OperationSpec(
    name="sql.ElasticPools.CreateOrUpdate",
    method="PUT",
    template=_ELASTIC_POOL,
    api_version=SQL_API_VERSION,
    expected_status=(200, 201, 202),
    response_shape=Resource,
    long_running=LroConvention(),
)
ELASTIC_POOL_DELETE = OperationSpec(
    name="sql.ElasticPools.Delete",
    method="DELETE",
    template=_ELASTIC_POOL,
    api_version=SQL_API_VERSION,
    expected_status=(200, 204),
)
ELASTIC_POOL_GET = OperationSpec(
    name="sql.ElasticPools.Get",
    method="GET",
    template=_ELASTIC_POOL,
    api_version=SQL_API_VERSION,
    response_shape=Resource,
)
ELASTIC_POOL_LIST_BY_SERVER = OperationSpec(
    name="sql.ElasticPools.ListByServer",
    method="GET",
    template=_SQL_SERVER + "/elasticPools",
    api_version=SQL_API_VERSION,
    paging=LIST,
    item_shape=Resource,
)
ELASTIC_POOL_LIST_METRIC_DEFINITIONS = OperationSpec(
    name="sql.ElasticPools.ListMetricDefinitions",
    method="GET",
    template=_ELASTIC_POOL + "/metricDefinitions",
    api_version=SQL_API_VERSION,
    paging=LIST,
)
ELASTIC_POOL_LIST_METRICS = OperationSpec(
    name="sql.ElasticPools.ListMetrics",
    method="GET",
    template=_ELASTIC_POOL + "/metrics",
    api_version=SQL_API_VERSION,
    query=("$filter",),
    paging=LIST,
)
ELASTIC_POOL_UPDATE = OperationSpec(
    name="sql.ElasticPools.Update",
    method="PATCH",
    template=_ELASTIC_POOL,
    api_version=SQL_API_VERSION,
    expected_status=(200, 202),
    response_shape=Resource,
    long_running=LroConvention(),
)

SYNC_MEMBER_CREATE_OR_UPDATE = OperationSpec(
    name="sql.SyncMembers.CreateOrUpdate",
    method="PUT",
    template=_SYNC_MEMBERS + "/{syncMemberName}",
    api_version=SQL_PREVIEW_API_VERSION,
    expected_status=(200, 201, 202),
    response_shape=Resource,
    long_running=LroConvention(),
)
SYNC_MEMBER_DELETE = OperationSpec(
    name="sql.SyncMembers.Delete",
    method="DELETE",
    template=_SYNC_MEMBERS + "/{syncMemberName}",
    api_version=SQL_PREVIEW_API_VERSION,
    expected_status=(200, 202, 204),
    long_running=LroConvention(),
)
SYNC_MEMBER_GET = OperationSpec(
    name="sql.SyncMembers.Get",
    method="GET",
    template=_SYNC_MEMBERS + "/{syncMemberName}",
    api_version=SQL_PREVIEW_API_VERSION,
    response_shape=Resource,
)
SYNC_MEMBER_LIST_BY_SYNC_GROUP = OperationSpec(
    name="sql.SyncMembers.ListBySyncGroup",
    method="GET",
    template=_SYNC_MEMBERS,
    api_version=SQL_PREVIEW_API_VERSION,
    paging=LIST,
    item_shape=Resource,
)

SERVER_USAGES_LIST_BY_SERVER = OperationSpec(
    name="sql.ServerUsages.ListByServer",
    method="GET",
    template=_SQL_SERVER + "/usages",
    api_version=SQL_API_VERSION,
    paging=LIST,
    item_shape=ServerUsage,
)

LTR_POLICY_CREATE_OR_UPDATE = OperationSpec(
    name="sql.BackupLongTermRetentionPolicies.CreateOrUpdate",
    method="PUT",
    template=_LTR_POLICIES + "/{backupLongTermRetentionPolicyName}",
    api_version=SQL_API_VERSION,
    path_defaults={"backupLongTermRetentionPolicyName": "Default"},
    expected_status=(200, 201, 202),
    response_shape=Resource,
    long_running=LroConvention(),
)
LTR_POLICY_GET = OperationSpec(
    name="sql.BackupLongTermRetentionPolicies.Get",
    method="GET",
    template=_LTR_POLICIES + "/{backupLongTermRetentionPolicyName}",
    api_version=SQL_API_VERSION,
    path_defaults={"backupLongTermRetentionPolicyName": "Default"},
    response_shape=Resource,
)
LTR_POLICY_LIST_BY_DATABASE = OperationSpec(
    name="sql.BackupLongTermRetentionPolicies.ListByDatabase",
    method="GET",
    template=_LTR_POLICIES,
    api_version=SQL_API_VERSION,
    paging=LIST,
    item_shape=Resource,
)

GRAPH_GET_CURRENT_USER = OperationSpec(
    name="graphrbac.Objects.GetCurrentUser",
    method="GET",
    template="/{tenantID}/me",
    api_version=GRAPH_API_VERSION,
    response_shape=Dict[str, Any],
)
GRAPH_GET_OBJECTS_BY_OBJECT_IDS = OperationSpec(
    name="graphrbac.Objects.GetObjectsByObjectIds",
    method="POST",
    template="/{tenantID}/getObjectsByObjectIds",
    api_version=GRAPH_API_VERSION,
    paging=PagingConvention(
        next_link_field="odata.nextLink",
        next_link_template="/{tenantID}/{nextLink}",
        next_method="POST",
    ),
    item_shape=Dict[str, Any],
)

CACHE_GET = OperationSpec(
    name="redis.Client.Get",
    method="GET",
    template=_CACHE,
    api_version=CACHE_API_VERSION,
    parameters=(RESOURCE_GROUP_RULE,),
    response_shape=Dict[str, Any],
)
CACHE_LIST_KEYS = OperationSpec(
    name="redis.Client.ListKeys",
    method="POST",
    template=_CACHE + "/listKeys",
    api_version=CACHE_API_VERSION,
    response_shape=AccessKeys,
)

OPERATIONS: Dict[str, OperationSpec] = {
    spec.name: spec
    for spec in (
        WEBHOOK_CREATE_OR_UPDATE,
        WEBHOOK_DELETE,
        WEBHOOK_GENERATE_URI,
        WEBHOOK_GET,
        WEBHOOK_LIST_BY_AUTOMATION_ACCOUNT,
        WEBHOOK_UPDATE,
        ELASTIC_POOL_CREATE_OR_UPDATE,
        ELASTIC_POOL_DELETE,
        ELASTIC_POOL_GET,
        ELASTIC_POOL_LIST_BY_SERVER,
        ELASTIC_POOL_LIST_METRIC_DEFINITIONS,
        ELASTIC_POOL_LIST_METRICS,
        ELASTIC_POOL_UPDATE,
        SYNC_MEMBER_CREATE_OR_UPDATE,
        SYNC_MEMBER_DELETE,
        SYNC_MEMBER_GET,
        SYNC_MEMBER_LIST_BY_SYNC_GROUP,
        SERVER_USAGES_LIST_BY_SERVER,
        LTR_POLICY_CREATE_OR_UPDATE,
        LTR_POLICY_GET,
        LTR_POLICY_LIST_BY_DATABASE,
        GRAPH_GET_CURRENT_USER,
        GRAPH_GET_OBJECTS_BY_OBJECT_IDS,
        CACHE_GET,
        CACHE_LIST_KEYS,
    )
}


def get_operation(name: str) -> OperationSpec:
    try:
        return OPERATIONS[name]
    except KeyError:
        raise KeyError(f"unknown operation {name!r}") from None


def operation_names() -> List[str]:
    return sorted(OPERATIONS)
