"""SQLite storage for the product catalog and usage quotas."""

from .catalog import CatalogDB
from .schema import ensure_schema
from .usage import UsageQuota

__all__ = [
    "CatalogDB",
    "UsageQuota",
    "ensure_schema",
]
