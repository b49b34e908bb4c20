import os
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
DEFAULT_BASE_URL = "https://management.azure.com"


class ProvisioningState(str, Enum):
    started = "Started"
    in_progress = "InProgress"
    succeeded = "Succeeded"
    failed = "Failed"
    canceled = "Canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ProvisioningState.succeeded,
            ProvisioningState.failed,
            ProvisioningState.canceled,
        )


class FinalStateVia(str, Enum):
    """Where the finished resource is read from once an operation succeeds"""

    original_uri = "original-uri"
    location = "location"
    operation_body = "operation-body"
    none = "none"


class OperationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: str
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[bytes] = None


class RawResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: int
    headers: Dict[str, str] = Field(default_factory=dict)
    body: bytes = b""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class PollSnapshot(BaseModel):
    """Read-only view of a poll future, handed to status observers"""

    model_config = ConfigDict(frozen=True)

    status: ProvisioningState
    history: Tuple[ProvisioningState, ...]
    polling_url: Optional[str]
    poll_count: int
    last_status_code: Optional[int]
    elapsed_time: float


class LroConvention(BaseModel):
    """How one operation reports asynchronous progress.

    Services disagree on the status field and its vocabulary, so every
    long-running operation carries its own convention.
    """

    model_config = ConfigDict(frozen=True)

    status_field: str = "status"
    resource_status_field: str = "properties.provisioningState"
    succeeded_values: Tuple[str, ...] = ("Succeeded",)
    failed_values: Tuple[str, ...] = ("Failed",)
    canceled_values: Tuple[str, ...] = ("Canceled", "Cancelled")
    infer_success_without_status: bool = True
    location_body_field: Optional[str] = None
    final_state_via: Optional[FinalStateVia] = None
    error_field: str = "error"


class PagingConvention(BaseModel):
    model_config = ConfigDict(frozen=True)

    items_field: str = "value"
    next_link_field: str = "nextLink"
    next_link_template: Optional[str] = None
    next_method: str = "GET"


class PollingConfig(BaseModel):
    default_interval: float = 30.0
    min_interval: float = 1.0
    timeout: Optional[float] = 3600.0  # 1 hour
    max_polls: Optional[int] = None

    @field_validator("default_interval")
    @classmethod
    def _no_busy_polling(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("default_interval must be > 0")
        return value


class ClientConfig(BaseModel):
    base_url: str = DEFAULT_BASE_URL
    subscription_id: str = ""
    tenant_id: str = ""
    request_timeout: float = 60.0
    user_agent: str = "armclient"
    default_headers: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "ClientConfig":
        """Build a config from ARM_* environment variables"""
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for field, var in (
            ("base_url", "ARM_BASE_URL"),
            ("subscription_id", "ARM_SUBSCRIPTION_ID"),
            ("tenant_id", "ARM_TENANT_ID"),
            ("request_timeout", "ARM_REQUEST_TIMEOUT"),
            ("user_agent", "ARM_USER_AGENT"),
        ):
            if env.get(var):
                values[field] = env[var]
        return cls(**values)


class ParameterRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    pattern: Optional[str] = None
    required: bool = True
    max_length: Optional[int] = None


class ResourceState(BaseModel):
    """Flat attribute store filled by a data source read"""

    id: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    sensitive: Set[str] = Field(default_factory=set)

    def set(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def redacted(self) -> Dict[str, Any]:
        """Attributes safe to log, with sensitive values masked"""
        return {
            key: "(sensitive)" if key in self.sensitive else value
            for key, value in self.attributes.items()
        }


class Page(BaseModel):
    items: List[Any]
    next_link: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)
