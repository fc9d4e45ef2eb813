"""Remote clients shared by the discovery and execution paths."""

from .async_utils import gather_isolated, run_sync
from .client import TestManagementClient
from .github import GitHubClient
from .query import Query

__all__ = [
    "GitHubClient",
    "Query",
    "TestManagementClient",
    "gather_isolated",
    "run_sync",
]
