"""RepoGuard — line-based security scanning for remote GitHub repositories."""

from .config import ScanConfig, Settings, load_settings
from .errors import AuthExpired, BinaryUnreadable, FetchFailed, RateLimited, TreeUnavailable
from .github import GitHubClient
from .models import FileScanResult, Issue, ProgressEvent, RepositoryRef, ScanStatus, TreeNode
from .orchestrator import ScanOrchestrator
from .rules import DEFAULT_RULESET, Rule, RuleSet

__version__ = "1.0.0"

__all__ = [
    "AuthExpired", "BinaryUnreadable", "DEFAULT_RULESET", "FetchFailed", "FileScanResult",
    "GitHubClient", "Issue", "ProgressEvent", "RateLimited", "RepositoryRef", "Rule", "RuleSet",
    "ScanConfig", "ScanOrchestrator", "ScanStatus", "Settings", "TreeNode", "TreeUnavailable",
    "load_settings", "__version__",
]
