"""客户端模块"""

from .delegates import ReadView, EntityDelegate, SoftDeleteDelegate, load_includes, resolve_include_keys
from .client import SoftDeleteClient, TransactionClient

__all__ = [
    "ReadView",
    "EntityDelegate",
    "SoftDeleteDelegate",
    "load_includes",
    "resolve_include_keys",
    "SoftDeleteClient",
    "TransactionClient",
]
