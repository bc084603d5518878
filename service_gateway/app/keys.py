"""
Key names for every counter and set the gateway keeps in the key-value store.

All tenant state is keyed by ``(tenant, dimension, time bucket)``. Date buckets
are UTC so gateway instances in different zones share counters.
"""

from datetime import datetime, timezone


def utc_day(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


def utc_month(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m")


def utc_hour(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H")


def gateway_config(tenant_id: str) -> str:
    return f"gateway_config:{tenant_id}"


def gateway_config_override(tenant_id: str) -> str:
    return f"gateway_config_override:{tenant_id}"


def rate_limit(tenant_id: str, endpoint: str, bucket: int) -> str:
    return f"rate_limit:{tenant_id}:{endpoint}:{bucket}"


def quota_daily(tenant_id: str, day: str) -> str:
    return f"quota:daily:{tenant_id}:{day}"


def quota_monthly(tenant_id: str, month: str) -> str:
    return f"quota:monthly:{tenant_id}:{month}"


def recent_requests(tenant_id: str, ip_address: str) -> str:
    return f"recent_requests:{tenant_id}:{ip_address}"


def known_ips(tenant_id: str) -> str:
    return f"known_ips:{tenant_id}"


def ip_whitelist(tenant_id: str) -> str:
    return f"ip_whitelist:{tenant_id}"


def requests_daily(tenant_id: str, day: str) -> str:
    return f"analytics:requests:{tenant_id}:{day}"


def requests_hourly(tenant_id: str, hour: str) -> str:
    return f"analytics:requests:hourly:{tenant_id}:{hour}"


def endpoint_daily(tenant_id: str, endpoint: str, day: str) -> str:
    return f"analytics:endpoints:{tenant_id}:{endpoint}:{day}"


def endpoint_index(tenant_id: str, day: str) -> str:
    return f"analytics:endpoint_index:{tenant_id}:{day}"


def avg_endpoint_usage(tenant_id: str, day: str) -> str:
    return f"analytics:avg_endpoint_usage:{tenant_id}:{day}"


def errors_daily(tenant_id: str, day: str) -> str:
    return f"analytics:errors:{tenant_id}:{day}"


def status_code_daily(tenant_id: str, status_code: int, day: str) -> str:
    return f"analytics:statuscode:{tenant_id}:{status_code}:{day}"


def status_code_index(tenant_id: str, day: str) -> str:
    return f"analytics:statuscode_index:{tenant_id}:{day}"


def response_time_bucket(tenant_id: str, bucket: str, day: str) -> str:
    return f"analytics:response_time:{tenant_id}:{bucket}:{day}"


def response_time_total(tenant_id: str, day: str) -> str:
    return f"analytics:response_time_total:{tenant_id}:{day}"


def responses_daily(tenant_id: str, day: str) -> str:
    return f"analytics:responses:{tenant_id}:{day}"
