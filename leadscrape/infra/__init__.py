"""Infrastructure helpers: egress pools and lead storage."""

from .lead_repository import InMemoryLeadRepository, LeadRepository, SQLiteLeadRepository
from .proxy_pool import Proxy, ProxyPool
from .storage import SQLiteManager
from .ua_pool import UserAgentPool

__all__ = [
    "InMemoryLeadRepository",
    "LeadRepository",
    "Proxy",
    "ProxyPool",
    "SQLiteLeadRepository",
    "SQLiteManager",
    "UserAgentPool",
]
