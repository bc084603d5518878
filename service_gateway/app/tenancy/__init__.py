"""
Tenant-scoped gateway configuration (limits, quotas, security flags).
"""

from .config_provider import TenantConfigProvider, CONFIG_TTL_SECONDS

__all__ = ["TenantConfigProvider", "CONFIG_TTL_SECONDS"]
