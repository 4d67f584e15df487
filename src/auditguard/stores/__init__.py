from auditguard.stores.audit import AuditStore, FileAuditStore, InMemoryAuditStore
from auditguard.stores.baseline import BaselineProvider, InMemoryBaselineProvider
from auditguard.stores.query import AuditQuery, QueryCache, QueryPage

__all__ = [
    "AuditQuery",
    "AuditStore",
    "BaselineProvider",
    "FileAuditStore",
    "InMemoryAuditStore",
    "InMemoryBaselineProvider",
    "QueryCache",
    "QueryPage",
]
