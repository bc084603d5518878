"""
Gateway data models.

Configuration objects are pydantic models with validated ranges and camelCase
aliases, so the JSON cached per tenant has the same shape operators send to the
config API. Per-request objects are plain dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


class RateLimitSettings(_CamelModel):
    """Fixed-window limit applied per tenant and endpoint."""

    window_seconds: int = Field(default=3600, gt=0, le=86400 * 31)
    max_requests: int = Field(default=1000, gt=0)
    # Carried for API compatibility; fixed windows do not consume it.
    burst: int = Field(default=50, ge=0)


class QuotaSettings(_CamelModel):
    daily_limit: int = Field(default=10000, gt=0)
    monthly_limit: int = Field(default=300000, gt=0)


class SecuritySettings(_CamelModel):
    anomaly_detection_enabled: bool = True
    signature_validation_enabled: bool = True
    ip_whitelist_enabled: bool = False


class MonitoringSettings(_CamelModel):
    analytics_enabled: bool = True
    metrics_enabled: bool = True
    alerting_enabled: bool = True


class AnomalyPolicy(_CamelModel):
    """Heuristic weights and decision thresholds for the anomaly detector.

    The defaults are illustrative values, not empirically tuned ones; tenants
    can override them through the config API.
    """

    frequency_weight: int = Field(default=30, ge=0, le=100)
    geo_weight: int = Field(default=20, ge=0, le=100)
    user_agent_weight: int = Field(default=15, ge=0, le=100)
    endpoint_weight: int = Field(default=25, ge=0, le=100)
    off_hours_weight: int = Field(default=10, ge=0, le=100)

    anomaly_threshold: int = Field(default=25, ge=0)
    throttle_threshold: int = Field(default=40, ge=0)
    block_threshold: int = Field(default=70, ge=0)

    min_user_agent_length: int = Field(default=10, ge=0)
    business_hours_start: int = Field(default=6, ge=0, le=23)
    business_hours_end: int = Field(default=22, ge=0, le=23)

    @model_validator(mode="after")
    def _check_ordering(self) -> "AnomalyPolicy":
        if self.throttle_threshold > self.block_threshold:
            raise ValueError("throttleThreshold must not exceed blockThreshold")
        if self.business_hours_start > self.business_hours_end:
            raise ValueError("businessHoursStart must not exceed businessHoursEnd")
        return self


class GatewayConfig(_CamelModel):
    """Per-tenant gateway configuration, immutable once read."""

    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    quotas: QuotaSettings = Field(default_factory=QuotaSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    anomaly: AnomalyPolicy = Field(default_factory=AnomalyPolicy)
    fail_closed: bool = False

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, payload: str) -> "GatewayConfig":
        return cls.model_validate_json(payload)


DEFAULT_GATEWAY_CONFIG = GatewayConfig()


class AnomalyAction(str, Enum):
    ALLOW = "allow"
    THROTTLE = "throttle"
    BLOCK = "block"


class GatewayDecision(str, Enum):
    """Terminal states of the per-request pipeline."""

    PASSED = "passed"
    REJECTED_400_TENANT = "rejected_400_tenant"
    REJECTED_429_RATE = "rejected_429_rate"
    REJECTED_429_QUOTA = "rejected_429_quota"
    REJECTED_403_ANOMALY = "rejected_403_anomaly"
    REJECTED_403_IP = "rejected_403_ip"
    REJECTED_500_ERROR = "rejected_500_error"


@dataclass
class RequestContext:
    """Per-request data collected at entry and completed after the response."""

    tenant_id: str
    endpoint: str
    method: str
    ip_address: str = "unknown"
    user_id: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    request_size_bytes: int = 0
    response_size_bytes: Optional[int] = None
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        if not self.tenant_id:
            raise ValueError("tenant_id must be a non-empty string")
        if self.request_size_bytes < 0:
            self.request_size_bytes = 0


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_time: int
    retry_after: Optional[int] = None


@dataclass
class AnomalyResult:
    is_anomaly: bool
    risk_score: int
    factors: List[str] = field(default_factory=list)
    action: AnomalyAction = AnomalyAction.ALLOW

    @classmethod
    def clean(cls) -> "AnomalyResult":
        return cls(is_anomaly=False, risk_score=0, factors=[], action=AnomalyAction.ALLOW)


@dataclass
class QuotaUsage:
    daily: int
    monthly: int
    daily_limit: int
    monthly_limit: int

    @property
    def within_quota(self) -> bool:
        return self.daily < self.daily_limit and self.monthly < self.monthly_limit


class EndpointCount(_CamelModel):
    endpoint: str
    count: int


class HourlyMetric(_CamelModel):
    hour: str
    requests: int


class ApiAnalytics(_CamelModel):
    """Dashboard aggregate for one tenant over a trailing window of days."""

    total_requests: int = 0
    success_rate: float = 0.0
    average_response_time: float = 0.0
    error_rate: float = 0.0
    top_endpoints: List[EndpointCount] = Field(default_factory=list)
    hourly_metrics: List[HourlyMetric] = Field(default_factory=list)
    status_codes: Dict[str, int] = Field(default_factory=dict)
    response_time_distribution: Dict[str, int] = Field(default_factory=dict)
