"""
Application layer package.

Contains the connection resolver, the generic object client and the site
operations that orchestrate provider calls.
"""

from cmadmin.application.client import CMClient
from cmadmin.application.connection import ConnectionResolver, parse_namespace_path

__all__ = [
    "CMClient",
    "ConnectionResolver",
    "parse_namespace_path",
]
