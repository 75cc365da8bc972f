"""Multi-tenant admin core — identity resolution, usage ledger, feature flags."""

from src.saas.admin import TenantAdminService, TenantCreateResult
from src.saas.audit import AuditAction, AuditLogEntry, AuditLogger
from src.saas.features import FeatureFlag, FeatureFlagService, FlagDecision, FlagRule, evaluate_flag
from src.saas.plans import PlanCatalog
from src.saas.resolver import Identity, TenantResolver
from src.saas.tenant import PLAN_LIMITS, PLAN_PRICES, Tenant
from src.saas.usage import UsageLedger, UsageRecord

__all__ = [
    "AuditAction",
    "AuditLogEntry",
    "AuditLogger",
    "FeatureFlag",
    "FeatureFlagService",
    "FlagDecision",
    "FlagRule",
    "Identity",
    "PLAN_LIMITS",
    "PLAN_PRICES",
    "PlanCatalog",
    "Tenant",
    "TenantAdminService",
    "TenantCreateResult",
    "TenantResolver",
    "UsageLedger",
    "UsageRecord",
    "evaluate_flag",
]
