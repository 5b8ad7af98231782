"""
GitHub Module — Contents API client, request queue and Pages deployment.
"""

from .client import CommitResult, GitHubClient, RateLimitInfo, RepoFile
from .deployment import DeploymentMonitor
from .optimizer import RequestQueue

__all__ = [
    "GitHubClient",
    "RepoFile",
    "CommitResult",
    "RateLimitInfo",
    "RequestQueue",
    "DeploymentMonitor",
]
