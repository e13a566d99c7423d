#!/usr/bin/env python3
"""
===================================================================
REPOSITORY SECRET SCANNER FOR GITHUB
===================================================================

PURPOSE:
    Walks a single GitHub repository through the REST contents API,
    looks for text that resembles leaked credentials (cloud keys,
    payment keys, platform tokens, private keys, connection strings)
    and reports every matching line. Optionally files a tracking
    issue on the scanned repository.

FEATURES:
    ✓ No clone required - files are read through the contents API
    ✓ Rate-limit aware HTTP client (quota headers, local short-circuit)
    ✓ Exponential backoff on 429 / 5xx with Retry-After support
    ✓ Bounded traversal (depth limit + file budget) for quota protection
    ✓ Skip-lists for vendor/build directories, lock and manifest files
    ✓ Extension allow-list so binary assets never transit the network
    ✓ Registry of 20+ credential patterns with severities
    ✓ Partial-failure policy: one unreadable file never voids a scan
    ✓ Repository search and rate limit inspection
    ✓ GitHub issue filing with a Markdown findings report
    ✓ Structured JSON logging for observability

REQUIREMENTS:
    pip install aiohttp PyGithub tqdm

USAGE:
    # Scan a repository (token optional, raises the quota)
    export GITHUB_TOKEN="ghp_your_token_here"
    python repo_secret_scanner.py octocat/hello-world

    # Scan and open an issue with the findings
    python repo_secret_scanner.py octocat/hello-world --create-issue

    # Search repositories / inspect remaining quota
    python repo_secret_scanner.py --search "dotenv language:python" --page 2
    python repo_secret_scanner.py --rate-limit

CONFIGURATION:
    Set via environment variables:
    - GITHUB_TOKEN: GitHub token (optional for scanning, required for issues)
    - GITHUB_API_URL: REST API base (default: https://api.github.com)
    - GITHUB_API_MAX_RETRIES: Attempts per request (default: 3)
    - GITHUB_API_BACKOFF_BASE: Backoff base in seconds (default: 2.0)
    - GITHUB_API_MAX_RETRY_AFTER: Longest honoured Retry-After (default: 60)
    - REQUEST_TIMEOUT_SECONDS: Per-request timeout (default: 30)
    - SCAN_MAX_DEPTH: Directory levels below the root (default: 3)
    - SCAN_MAX_FILES: Files inspected per scan (default: 100)
    - MATCH_PREVIEW_LENGTH: Characters of line kept per match (default: 100)
    - SEARCH_PER_PAGE: Repository search page size (default: 10)
    - LOG_FORMAT: text|json (default: text)

===================================================================
"""
import argparse
import asyncio
import json
import logging
import math
import os
import re
import sys
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Pattern, Sequence, Set, Tuple
from urllib.parse import quote, urlencode

import aiohttp
from github import Auth, Github, GithubException
from tqdm import tqdm

__version__ = "1.0.0"

# ===================================================================
# CONFIGURATION & CONSTANTS
# ===================================================================

GITHUB_TOKEN = os.environ.get("GITHUB_TOKEN")
GITHUB_API_URL = os.environ.get("GITHUB_API_URL", "https://api.github.com").rstrip("/")
GITHUB_API_MAX_RETRIES = int(os.environ.get("GITHUB_API_MAX_RETRIES", "3"))
GITHUB_API_BACKOFF_BASE = float(os.environ.get("GITHUB_API_BACKOFF_BASE", "2.0"))
GITHUB_API_MAX_RETRY_AFTER = float(os.environ.get("GITHUB_API_MAX_RETRY_AFTER", "60"))
REQUEST_TIMEOUT_SECONDS = float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "30"))
SCAN_MAX_DEPTH = int(os.environ.get("SCAN_MAX_DEPTH", "3"))
SCAN_MAX_FILES = int(os.environ.get("SCAN_MAX_FILES", "100"))
MATCH_PREVIEW_LENGTH = int(os.environ.get("MATCH_PREVIEW_LENGTH", "100"))
SEARCH_PER_PAGE = int(os.environ.get("SEARCH_PER_PAGE", "10"))
LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # text|json

# Unauthenticated quota, assumed until the first response says otherwise
DEFAULT_RATE_LIMIT = 60

GITHUB_ACCEPT_HEADER = "application/vnd.github.v3+json"
RATE_LIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"
RATE_LIMIT_LIMIT_HEADER = "X-RateLimit-Limit"
RATE_LIMIT_RESET_HEADER = "X-RateLimit-Reset"
RETRY_AFTER_HEADER = "Retry-After"

STATUS_MESSAGES = {
    401: "Invalid GitHub token. Please check your authentication.",
    403: "Access denied. Check your token permissions.",
    404: "Not found. Check the repository owner, name and path.",
    500: "GitHub API server error. Please try again later.",
}

# Directory names never listed or descended into (exact name match)
SKIP_DIRECTORIES = frozenset({
    # Version control
    ".git", ".svn", ".hg",
    # Dependencies / vendored code
    "node_modules", "vendor", "bower_components", ".venv", "venv",
    # Build output & caches
    "dist", "build", "out", "target", ".next", ".nuxt", "__pycache__", ".cache",
})

# File names skipped without a content fetch (exact name match)
SKIP_FILES = frozenset({
    # Lock files
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml", "poetry.lock",
    "Pipfile.lock", "composer.lock", "Gemfile.lock", "Cargo.lock", "go.sum",
    # Manifests
    "package.json", "composer.json", "manifest.json",
    # OS metadata
    ".DS_Store", "Thumbs.db", "desktop.ini",
})

# Only files ending in one of these are fetched
TEXT_FILE_EXTENSIONS = (
    # Source code
    ".js", ".ts", ".tsx", ".jsx", ".py", ".java", ".go", ".rb", ".php",
    ".cs", ".kt", ".swift", ".rs",
    # Scripts
    ".sh", ".bash", ".zsh", ".ps1", ".sql",
    # Config / markup
    ".env", ".yml", ".yaml", ".json", ".xml", ".toml", ".ini", ".cfg",
    ".properties", ".conf", ".config", ".tf", ".dockerfile",
    # Plain text
    ".txt", ".md",
)

DIRECTORY_PROGRESS = "Scanning directory: {}"
FILE_PROGRESS = "Scanning file: {}"


# ===================================================================
# LOGGING SETUP
# ===================================================================

class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    EXTRA_FIELDS = ("repo", "path", "finding_count")

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for name in self.EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        return json.dumps(log_data)


def setup_logging(log_format: str = "text") -> logging.Logger:
    """Setup logging with either text or JSON format.

    Log records go to stderr so that ``--output-format json`` keeps stdout
    machine readable.
    """
    logger = logging.getLogger(__name__)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)

    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))

    logger.addHandler(handler)
    return logger


logger = setup_logging(LOG_FORMAT)


# ===================================================================
# ERRORS
# ===================================================================

class GitHubAPIError(Exception):
    """A GitHub call that could not ultimately succeed.

    ``retryable`` tells the HTTP client whether another attempt may help;
    ``str(error)`` is always a short human readable message.
    """

    def __init__(self, status_code: int, message: str, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.retryable = retryable


class RateLimitExceededError(GitHubAPIError):
    """Quota exhausted, either known locally or reported by a 429."""

    def __init__(self, message: str, retry_after: float):
        super().__init__(429, message, retryable=True)
        self.retry_after = retry_after


class ContentFetchError(GitHubAPIError):
    """Raw file content could not be fetched.

    Status 0 means the request never produced a usable answer (transport
    or decoding failure); anything else is the status the remote rejected
    the request with.
    """

    def __init__(self, status_code: int, message: str):
        super().__init__(status_code, message, retryable=False)

    @property
    def rejected(self) -> bool:
        return self.status_code > 0


# ===================================================================
# RATE LIMITING
# ===================================================================

def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitInfo:
    """Quota state as last reported by GitHub.

    ``reset`` is an absolute deadline in epoch milliseconds.
    """
    remaining: int = DEFAULT_RATE_LIMIT
    limit: int = DEFAULT_RATE_LIMIT
    reset: int = 0

    def seconds_until_reset(self, now_ms: Optional[int] = None) -> int:
        now_ms = _now_ms() if now_ms is None else now_ms
        return max(0, math.ceil((self.reset - now_ms) / 1000))


class GitHubRateLimiter:
    """Advisory quota cache shared by every client of one identity.

    The cache is overwritten by whichever response arrived last; GitHub
    enforces the real quota server-side, this only avoids wasting calls
    that are certain to be refused.
    """

    def __init__(self, state: Optional[RateLimitInfo] = None):
        self.state = state or RateLimitInfo()
        self.total_requests = 0
        self.total_short_circuits = 0

    def check_before_call(self) -> None:
        """Raise RateLimitExceededError if the cached quota is spent.

        Raises:
            RateLimitExceededError: remaining <= 1 and the reset deadline
                has not passed yet
        """
        now_ms = _now_ms()
        if self.state.remaining <= 1 and now_ms < self.state.reset:
            wait_seconds = self.state.seconds_until_reset(now_ms)
            self.total_short_circuits += 1
            logger.warning(f"Rate limit exhausted locally, {wait_seconds}s until reset")
            raise RateLimitExceededError(
                f"Rate limit exceeded. Please wait {wait_seconds} seconds before trying again.",
                retry_after=wait_seconds,
            )
        self.total_requests += 1

    def update_from_headers(self, headers: Mapping[str, str]) -> bool:
        """Overwrite the cached state from quota headers.

        Returns:
            True if all three quota headers were present and parsed
        """
        remaining = headers.get(RATE_LIMIT_REMAINING_HEADER)
        limit = headers.get(RATE_LIMIT_LIMIT_HEADER)
        reset = headers.get(RATE_LIMIT_RESET_HEADER)
        if remaining is None or limit is None or reset is None:
            return False

        try:
            self.state = RateLimitInfo(
                remaining=int(remaining),
                limit=int(limit),
                reset=int(reset) * 1000,
            )
        except ValueError:
            logger.debug(f"Ignoring malformed rate limit headers: {remaining}/{limit}/{reset}")
            return False
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Get rate limiter statistics."""
        return {
            "remaining": self.state.remaining,
            "limit": self.state.limit,
            "reset": datetime.fromtimestamp(self.state.reset / 1000, tz=timezone.utc).isoformat(),
            "total_requests": self.total_requests,
            "total_short_circuits": self.total_short_circuits,
        }


# Global rate limiter instance
rate_limiter = GitHubRateLimiter()


# ===================================================================
# HTTP CLIENT
# ===================================================================

@dataclass
class ApiResponse:
    """A fully read HTTP response."""
    status: int
    headers: Mapping[str, str]
    body: str
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.body)


def _backoff_delay(attempt: int) -> float:
    return GITHUB_API_BACKOFF_BASE ** attempt


def _retry_after_seconds(headers: Mapping[str, str]) -> Optional[float]:
    value = headers.get(RETRY_AFTER_HEADER)
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        # HTTP-date form is not used by GitHub
        return None
    if not math.isfinite(seconds):
        return None
    return min(max(0.0, seconds), GITHUB_API_MAX_RETRY_AFTER)


def _error_message(response: ApiResponse) -> str:
    if response.status in STATUS_MESSAGES:
        return STATUS_MESSAGES[response.status]
    try:
        message = response.json().get("message")
    except (ValueError, AttributeError):
        message = None
    return message or f"GitHub API error: {response.status}"


class GitHubClient:
    """Rate-limit aware HTTP client for the GitHub REST API.

    The client is the only place where retry and backoff decisions are
    made. Every attempt first consults the rate limiter, every response
    refreshes it.

    Args:
        token: Optional credential sent as a bearer token
        limiter: Quota cache, defaults to the process-wide instance
        session: Existing aiohttp session (owned by the caller)
        base_url: REST API base URL
        max_retries: Attempts per request
    """

    def __init__(
        self,
        token: Optional[str] = None,
        limiter: Optional[GitHubRateLimiter] = None,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = GITHUB_API_URL,
        max_retries: int = GITHUB_API_MAX_RETRIES,
    ):
        self.token = token
        self.rate_limiter = limiter if limiter is not None else rate_limiter
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(1, max_retries)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)
            )
        return self._session

    def build_headers(self, accept: Optional[str] = GITHUB_ACCEPT_HEADER, token: Optional[str] = None) -> Dict[str, str]:
        headers = {}
        if accept:
            headers["Accept"] = accept
        token = token or self.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _send(self, method: str, url: str, headers: Dict[str, str], json_body: Any) -> ApiResponse:
        session = self._get_session()
        async with session.request(method, url, headers=headers, json=json_body) as resp:
            body = await resp.text(errors="replace")
            return ApiResponse(status=resp.status, headers=resp.headers, body=body, url=str(resp.url))

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        check_quota: bool = True,
    ) -> ApiResponse:
        """
        Issue a request with quota checks and retries.

        Args:
            url: Absolute URL
            method: HTTP method
            headers: Request headers (defaults to build_headers())
            json_body: Optional JSON payload
            check_quota: Consult the local quota cache before each attempt.
                Responses refresh the cache either way.

        Returns:
            The first 2xx/3xx response

        Raises:
            RateLimitExceededError: local quota short-circuit, or 429 on every attempt
            GitHubAPIError: non-retryable 4xx, or 5xx on every attempt
            aiohttp.ClientError / asyncio.TimeoutError: transport failure on every attempt
        """
        headers = self.build_headers() if headers is None else headers
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            is_last_attempt = attempt == self.max_retries - 1

            # Raises straight to the caller; no network call is made
            if check_quota:
                self.rate_limiter.check_before_call()

            try:
                response = await self._send(method, url, headers, json_body)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                if is_last_attempt:
                    raise
                wait_time = _backoff_delay(attempt)
                logger.warning(f"Request to {url} failed (attempt {attempt + 1}/{self.max_retries}): {e!r}")
                logger.info(f"Backing off for {wait_time:.1f}s")
                await asyncio.sleep(wait_time)
                continue

            self.rate_limiter.update_from_headers(response.headers)

            if response.status == 429:
                retry_after = _retry_after_seconds(response.headers)
                wait_time = retry_after if retry_after is not None else _backoff_delay(attempt)
                last_error = RateLimitExceededError(
                    f"Rate limit exceeded. Please wait {math.ceil(wait_time)} seconds before trying again.",
                    retry_after=wait_time,
                )
                if is_last_attempt:
                    break
                logger.warning(f"Rate limited by GitHub (attempt {attempt + 1}/{self.max_retries}), waiting {wait_time:.1f}s")
                await asyncio.sleep(wait_time)
                continue

            if response.status >= 400:
                error = GitHubAPIError(response.status, _error_message(response), retryable=response.status >= 500)
                if not error.retryable or is_last_attempt:
                    raise error
                last_error = error
                wait_time = _backoff_delay(attempt)
                logger.warning(f"GitHub API error {response.status} (attempt {attempt + 1}/{self.max_retries}), backing off {wait_time:.1f}s")
                await asyncio.sleep(wait_time)
                continue

            return response

        raise last_error


# ===================================================================
# REPOSITORY CONTENT ACCESS
# ===================================================================

class EntryType(Enum):
    FILE = "file"
    DIRECTORY = "dir"
    OTHER = "other"  # symlinks, submodules


@dataclass(frozen=True)
class RepositoryEntry:
    """One item of a contents listing."""
    name: str
    path: str
    type: EntryType
    size: Optional[int] = None
    download_url: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RepositoryEntry":
        try:
            entry_type = EntryType(data.get("type"))
        except ValueError:
            entry_type = EntryType.OTHER
        return cls(
            name=data["name"],
            path=data["path"],
            type=entry_type,
            size=data.get("size"),
            download_url=data.get("download_url"),
        )

    @property
    def is_file(self) -> bool:
        return self.type is EntryType.FILE

    @property
    def is_directory(self) -> bool:
        return self.type is EntryType.DIRECTORY


@dataclass(frozen=True)
class Repository:
    """Search hit, reduced to the fields a caller needs to pick a target."""
    id: int
    name: str
    full_name: str
    owner: str
    html_url: str
    description: Optional[str] = None
    stargazers_count: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Repository":
        return cls(
            id=data["id"],
            name=data["name"],
            full_name=data["full_name"],
            owner=(data.get("owner") or {}).get("login", ""),
            html_url=data.get("html_url", ""),
            description=data.get("description"),
            stargazers_count=data.get("stargazers_count", 0),
        )


@dataclass
class SearchResult:
    total_count: int
    incomplete_results: bool
    items: List[Repository] = field(default_factory=list)


class RepositoryContentAccessor:
    """Lists directories and fetches raw files through a GitHubClient.

    No retries happen here; failures are the client's final verdict.
    """

    def __init__(self, client: GitHubClient):
        self.client = client

    async def list_entries(self, owner: str, repo: str, path: str = "") -> List[RepositoryEntry]:
        """
        List a repository path ("" is the root).

        The contents endpoint answers with an object for a file and an
        array for a directory; both come back as a list.

        Raises:
            GitHubAPIError: the API refused the call, or the answer was unusable
        """
        url = f"{self.client.base_url}/repos/{quote(owner)}/{quote(repo)}/contents/{quote(path, safe='/')}"
        try:
            response = await self.client.request(url)
            data = response.json()
            items = data if isinstance(data, list) else [data]
            return [RepositoryEntry.from_api(item) for item in items]
        except GitHubAPIError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError, TypeError) as e:
            raise GitHubAPIError(0, "Failed to fetch repository files") from e

    async def fetch_content(self, download_url: str) -> str:
        """
        Fetch the full text of a file from its download URL.

        Raises:
            ContentFetchError: ``rejected`` tells a refusal by the remote
                apart from a transport or decoding failure
        """
        try:
            response = await self.client.request(download_url, headers=self.client.build_headers(accept=None))
        except GitHubAPIError as e:
            raise ContentFetchError(e.status_code, f"Failed to fetch file content: {e.message}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            raise ContentFetchError(0, "Failed to fetch file content") from e
        return response.body

    async def search_repositories(self, query: str, page: int = 1, per_page: int = SEARCH_PER_PAGE) -> SearchResult:
        """Search public repositories, most starred first."""
        params = urlencode({
            "q": query,
            "sort": "stars",
            "order": "desc",
            "per_page": per_page,
            "page": page,
        })
        try:
            response = await self.client.request(f"{self.client.base_url}/search/repositories?{params}")
            data = response.json()
            return SearchResult(
                total_count=data.get("total_count", 0),
                incomplete_results=data.get("incomplete_results", False),
                items=[Repository.from_api(item) for item in data.get("items", [])],
            )
        except GitHubAPIError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise GitHubAPIError(0, "Failed to search repositories") from e

    async def get_rate_limit_info(self, token: Optional[str] = None) -> RateLimitInfo:
        """Ask GitHub for the current quota of the given (or configured) token.

        GitHub does not charge ``/rate_limit`` against the quota, so the call
        goes out even when the local cache says the quota is spent.
        """
        try:
            response = await self.client.request(
                f"{self.client.base_url}/rate_limit",
                headers=self.client.build_headers(token=token),
                check_quota=False,
            )
            rate = response.json()["rate"]
            return RateLimitInfo(
                remaining=int(rate["remaining"]),
                limit=int(rate["limit"]),
                reset=int(rate["reset"]) * 1000,
            )
        except GitHubAPIError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError, TypeError) as e:
            raise GitHubAPIError(0, "Failed to fetch rate limit") from e


# ===================================================================
# DETECTION PATTERNS
# ===================================================================

class Severity(Enum):
    """Reporting rank only; never influences detection."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class SecretPattern:
    id: str
    name: str
    regex: Pattern[str]
    description: str
    severity: Severity

    def matches(self, line: str) -> bool:
        # re.search keeps no position between calls, so every line starts fresh
        return self.regex.search(line) is not None


def _pattern(pattern_id: str, name: str, regex: str, description: str,
             severity: Severity, flags: int = 0) -> SecretPattern:
    return SecretPattern(pattern_id, name, re.compile(regex, flags), description, severity)


SECRET_PATTERNS: Tuple[SecretPattern, ...] = (
    # Cloud providers
    _pattern("aws_access_key", "AWS Access Key ID",
             r'\b(?:AKIA|ASIA)[0-9A-Z]{16}\b',
             "Identifies an AWS user and can grant access to cloud resources.",
             Severity.HIGH),
    _pattern("aws_secret_key", "AWS Secret Access Key",
             r'(?<![A-Za-z0-9/+=])[A-Za-z0-9/+=]{40}(?![A-Za-z0-9/+=])',
             "AWS secret key used with access key ID for authentication.",
             Severity.HIGH),
    _pattern("gcp_api_key", "Google Cloud API Key",
             r'\bAIza[0-9A-Za-z\-_]{35}\b',
             "Used to authenticate Google Cloud and Maps API requests.",
             Severity.MEDIUM),
    _pattern("azure_storage_key", "Azure Storage Account Key",
             r'AccountKey=[A-Za-z0-9+/]{86}==',
             "Can grant full access to Azure Storage resources.",
             Severity.HIGH),

    # Payment / finance
    _pattern("stripe_secret_key", "Stripe Secret Key",
             r'\b(?:sk|rk)_(?:live|test)_[0-9A-Za-z]{20,}\b',
             "Used to access Stripe API and modify payments or refunds.",
             Severity.HIGH),
    _pattern("paypal_access_token", "PayPal Access Token",
             r'\baccess_token\$production\$[0-9a-z]{16}\$[0-9a-f]{32}\b',
             "PayPal tokens may allow unauthorized access to payment APIs.",
             Severity.HIGH),
    _pattern("square_access_token", "Square Access Token",
             r'\bEAAA[A-Za-z0-9\-_]{60,}\b',
             "Square API tokens can authorize financial transactions.",
             Severity.HIGH),

    # Developer platforms
    _pattern("github_pat", "GitHub Personal Access Token",
             r'\bgh[pousr]_[A-Za-z0-9]{36,}\b',
             "Used to access GitHub APIs with user-level permissions.",
             Severity.HIGH),
    _pattern("gitlab_token", "GitLab Personal Access Token",
             r'\bglpat-[A-Za-z0-9\-_]{20,}\b',
             "Grants access to GitLab API with user privileges.",
             Severity.HIGH),
    _pattern("bitbucket_token", "Bitbucket Access Token",
             r'\bATBB[A-Za-z0-9=_\-]{24,}',
             "Access token for Bitbucket repositories or pipelines.",
             Severity.HIGH),

    # Messaging & communication
    _pattern("slack_token", "Slack Token",
             r'\bxox[baprs]-[A-Za-z0-9-]{10,48}\b',
             "Slack tokens allow access to workspaces and channels.",
             Severity.HIGH),
    _pattern("slack_webhook", "Slack Webhook URL",
             r'https://hooks\.slack\.com/services/T[A-Z0-9]+/B[A-Z0-9]+/[A-Za-z0-9]+',
             "Anyone holding the URL can post into the channel.",
             Severity.MEDIUM),
    _pattern("discord_token", "Discord Bot/User Token",
             r'\b[MN][A-Za-z0-9_-]{23,25}\.[A-Za-z0-9_-]{6}\.[A-Za-z0-9_-]{27,38}\b',
             "Can be used to impersonate bots or users in Discord.",
             Severity.HIGH),
    _pattern("telegram_bot_token", "Telegram Bot Token",
             r'\b[0-9]{8,10}:[A-Za-z0-9_-]{35}\b',
             "Used to control Telegram bots or send messages as them.",
             Severity.HIGH),
    _pattern("twilio_api_key", "Twilio API Key",
             r'\bSK[0-9a-fA-F]{32}\b',
             "Used to authenticate Twilio API requests.",
             Severity.HIGH),
    _pattern("sendgrid_api_key", "SendGrid API Key",
             r'\bSG\.[A-Za-z0-9_-]{22}\.[A-Za-z0-9_-]{43}\b',
             "Allows sending of emails via SendGrid API.",
             Severity.HIGH),

    # Authentication & crypto
    _pattern("private_key", "Private Key",
             r'-----BEGIN (?:RSA |DSA |EC |PGP |OPENSSH |ENCRYPTED )?PRIVATE KEY(?: BLOCK)?-----',
             "Private cryptographic key, must never be shared.",
             Severity.CRITICAL),
    _pattern("jwt_token", "JWT Token",
             r'\beyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}',
             "Encoded JSON Web Token possibly containing auth credentials.",
             Severity.MEDIUM),
    _pattern("oauth_token", "Google OAuth Access Token",
             r'\bya29\.[0-9A-Za-z\-_]+',
             "OAuth token that can authenticate API requests.",
             Severity.HIGH),

    # Databases & configs
    _pattern("database_url", "Database Connection URL",
             r'\b(?:postgres(?:ql)?|mysql|mariadb|mongodb(?:\+srv)?|mssql|oracle|redis|couchdb|neo4j|jdbc)://[^\s\'"]+',
             "Contains credentials and host info for databases.",
             Severity.HIGH, re.IGNORECASE),
    _pattern("firebase_url", "Firebase Database URL",
             r'https://[a-z0-9-]+\.firebaseio\.com',
             "Points to Firebase backend database endpoint.",
             Severity.MEDIUM),

    # Generic catch-all
    _pattern("generic_keyword", "Generic Secret Keyword",
             r'(?<![A-Za-z0-9])(?:api[-_]?key|apikey|secret(?:[-_]?key)?s?|client[-_]?secret|auth[-_]?token'
             r'|access[-_]?key|private[-_]?key|password|passwd|credentials?)(?![A-Za-z0-9])',
             "Generic keyword indicating potential secret nearby.",
             Severity.LOW, re.IGNORECASE),
)


def _check_unique_ids(registry: Sequence[SecretPattern]) -> None:
    duplicates = [pid for pid, count in Counter(p.id for p in registry).items() if count > 1]
    if duplicates:
        raise ValueError(f"Duplicate secret pattern ids: {', '.join(sorted(duplicates))}")


_check_unique_ids(SECRET_PATTERNS)


def match_line(line: str, registry: Sequence[SecretPattern] = SECRET_PATTERNS) -> List[SecretPattern]:
    """Return every pattern found anywhere in ``line``, in registry order."""
    return [pattern for pattern in registry if pattern.matches(line)]


@dataclass(frozen=True)
class SecretMatch:
    """One flagged line.

    The pattern is copied by value so a match outlives registry changes.
    """
    file: str
    line: int
    content: str
    pattern_id: str
    name: str
    description: str
    severity: Severity

    @classmethod
    def from_pattern(cls, file: str, line: int, text: str, pattern: SecretPattern,
                     preview_length: int = MATCH_PREVIEW_LENGTH) -> "SecretMatch":
        return cls(
            file=file,
            line=line,
            content=text[:preview_length],
            pattern_id=pattern.id,
            name=pattern.name,
            description=pattern.description,
            severity=pattern.severity,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = data.pop("pattern_id")
        data["severity"] = self.severity.value
        return data


# ===================================================================
# SCANNER
# ===================================================================

ProgressSink = Callable[[str], None]


def _ignore_progress(message: str) -> None:
    pass


def should_scan_file(name: str) -> bool:
    """Skip-list (exact name) first, then the extension allow-list."""
    if name in SKIP_FILES:
        return False
    return name.lower().endswith(TEXT_FILE_EXTENSIONS)


def should_skip_directory(name: str) -> bool:
    return name in SKIP_DIRECTORIES


class RepositoryScanner:
    """
    Bounded walk over a repository that feeds every text file through
    the pattern registry.

    Directories are visited depth-first in listing order with an explicit
    stack; each frame keeps the unprocessed remainder of one listing. The
    walk stops descending below ``max_depth`` and stops taking new files
    once ``max_files`` distinct paths were scanned.

    Failures while reading a single file are logged and skipped. Failures
    while listing a directory are re-raised: they usually mean the whole
    scan is compromised (bad credentials, missing repo, no quota).
    """

    def __init__(
        self,
        accessor: RepositoryContentAccessor,
        registry: Sequence[SecretPattern] = SECRET_PATTERNS,
        max_depth: int = SCAN_MAX_DEPTH,
        max_files: int = SCAN_MAX_FILES,
        preview_length: int = MATCH_PREVIEW_LENGTH,
    ):
        self.accessor = accessor
        self.registry = registry
        self.max_depth = max_depth
        self.max_files = max_files
        self.preview_length = preview_length

    async def scan(self, owner: str, repo: str, on_progress: Optional[ProgressSink] = None) -> List[SecretMatch]:
        """
        Scan a repository starting at its root.

        Args:
            owner: Repository owner (user or organization)
            repo: Repository name
            on_progress: Optional sink receiving status strings

        Returns:
            Matches in traversal order

        Raises:
            GitHubAPIError: a directory listing failed
        """
        report = on_progress or _ignore_progress
        full_name = f"{owner}/{repo}"
        scanned_files: Set[str] = set()
        matches: List[SecretMatch] = []
        stack: List[Tuple[int, Iterator[RepositoryEntry]]] = []

        logger.info(f"Starting scan of {full_name} (depth <= {self.max_depth}, files <= {self.max_files})",
                    extra={"repo": full_name})

        root = await self._list_directory(owner, repo, "", 0, scanned_files, report)
        if root is not None:
            stack.append((0, iter(root)))

        while stack:
            depth, entries = stack[-1]
            entry = next(entries, None)
            if entry is None:
                stack.pop()
                continue

            if len(scanned_files) >= self.max_files:
                logger.info(f"File budget of {self.max_files} reached, stopping traversal", extra={"repo": full_name})
                break

            if entry.is_directory:
                if should_skip_directory(entry.name):
                    logger.debug(f"Skipping directory: {entry.path}")
                    continue
                if depth >= self.max_depth:
                    logger.debug(f"Depth limit reached, not descending into {entry.path}")
                    continue
                listing = await self._list_directory(owner, repo, entry.path, depth + 1, scanned_files, report)
                if listing is not None:
                    stack.append((depth + 1, iter(listing)))

            elif entry.is_file:
                if not should_scan_file(entry.name):
                    logger.debug(f"Skipping file: {entry.path}")
                    continue
                scanned_files.add(entry.path)
                report(FILE_PROGRESS.format(entry.name))
                matches.extend(await self._scan_file(entry))

        logger.info(f"Scan of {full_name} complete: {len(scanned_files)} files, {len(matches)} matches",
                    extra={"repo": full_name, "finding_count": len(matches)})
        return matches

    async def _list_directory(
        self,
        owner: str,
        repo: str,
        path: str,
        depth: int,
        scanned_files: Set[str],
        report: ProgressSink,
    ) -> Optional[List[RepositoryEntry]]:
        if depth > self.max_depth or len(scanned_files) >= self.max_files:
            return None

        report(DIRECTORY_PROGRESS.format(path or "root"))
        try:
            return await self.accessor.list_entries(owner, repo, path)
        except Exception as e:
            logger.error(f"Error scanning directory {path or 'root'}: {e}", extra={"repo": f"{owner}/{repo}", "path": path})
            raise

    async def _scan_file(self, entry: RepositoryEntry) -> List[SecretMatch]:
        if not entry.download_url:
            return []
        try:
            content = await self.accessor.fetch_content(entry.download_url)
            return self.match_content(entry.path, content)
        except Exception as e:
            logger.warning(f"Error scanning file {entry.path}: {e}", extra={"path": entry.path})
            return []

    def match_content(self, path: str, content: str) -> List[SecretMatch]:
        """Run the registry over each line of ``content``; line numbers are 1-based."""
        findings = []
        for line_number, line in enumerate(content.split("\n"), start=1):
            line = line.rstrip("\r")
            for pattern in match_line(line, self.registry):
                findings.append(SecretMatch.from_pattern(path, line_number, line, pattern, self.preview_length))
        return findings


async def scan_repository(
    owner: str,
    repo: str,
    on_progress: Optional[ProgressSink] = None,
    token: Optional[str] = GITHUB_TOKEN,
    max_depth: int = SCAN_MAX_DEPTH,
    max_files: int = SCAN_MAX_FILES,
) -> List[SecretMatch]:
    """Scan one repository with a fresh client bound to the shared rate limiter."""
    async with GitHubClient(token=token) as client:
        scanner = RepositoryScanner(RepositoryContentAccessor(client), max_depth=max_depth, max_files=max_files)
        return await scanner.scan(owner, repo, on_progress)


async def search_repositories(query: str, page: int = 1, token: Optional[str] = GITHUB_TOKEN) -> SearchResult:
    async with GitHubClient(token=token) as client:
        return await RepositoryContentAccessor(client).search_repositories(query, page)


async def get_rate_limit_info(token: Optional[str] = GITHUB_TOKEN) -> RateLimitInfo:
    async with GitHubClient(token=token) as client:
        return await RepositoryContentAccessor(client).get_rate_limit_info(token)


# ===================================================================
# ISSUE REPORTING
# ===================================================================

ISSUE_TITLE = "Security Alert: Potential Secrets Detected"
ISSUE_LABELS = ["security", "bug"]
ISSUES_DISABLED_MESSAGE = (
    "Issues are disabled for this repository. "
    "Please enable GitHub Issues to allow automated reporting."
)


@dataclass
class IssueResult:
    success: bool
    issue_url: Optional[str] = None
    error: Optional[str] = None


def _table_cell(text: str) -> str:
    # GitHub honours \| inside code spans within table cells
    return text.replace("|", "\\|").replace("\n", " ")


def build_issue_body(matches: Sequence[SecretMatch]) -> str:
    """Render scan matches as the Markdown body of a tracking issue."""
    by_type: Dict[str, List[SecretMatch]] = defaultdict(list)
    for match in matches:
        by_type[match.pattern_id].append(match)

    sections = []
    for pattern_id, group in by_type.items():
        rows = [
            f"| `{_table_cell(m.file)}` | {m.line} | {_table_cell(m.description)} | **{m.severity.value.upper()}** |"
            for m in group
        ]
        sections.append("\n".join([
            f"#### {group[0].name} ({pattern_id})",
            "",
            "| File | Line | Description | Severity |",
            "|------|------|-------------|----------|",
            *rows,
        ]))

    lines = [
        "## Security Alert: Potential Secrets Detected",
        "",
        "This repository appears to contain potential API keys, tokens, or other sensitive "
        "information that should not be committed to version control.",
        "",
        "### Findings Summary",
        f"- **Total matches**: {len(matches)}",
        f"- **Types detected**: {', '.join(by_type) or 'none'}",
        "",
        "---",
        "",
        "### Detailed Findings",
        "",
        "\n\n".join(sections),
        "",
        "---",
        "",
        "### Recommended Actions",
        "1. **Rotate all exposed credentials** immediately.",
        "2. **Remove secrets from git history** using `git filter-repo` or `BFG Repo-Cleaner`.",
        "3. **Move secrets to environment variables** or a secret manager "
        "(e.g., GitHub Secrets, AWS Secrets Manager).",
        "4. **Enable secret scanning** in repository settings.",
        "5. **Review recent commits** for any unauthorized access.",
        "",
        "### Resources",
        "- [GitHub Secret Scanning](https://docs.github.com/en/code-security/secret-scanning)",
        "- [Removing sensitive data from a repository](https://docs.github.com/en/authentication/"
        "keeping-your-account-and-data-secure/removing-sensitive-data-from-a-repository)",
        "- [BFG Repo-Cleaner](https://rtyley.github.io/bfg-repo-cleaner/)",
        "",
        "---",
        "",
        f"*This issue was created automatically by repo-secret-scanner {__version__}.*",
    ]
    return "\n".join(lines)


def create_security_issue(owner: str, repo: str, matches: Sequence[SecretMatch],
                          token: Optional[str]) -> IssueResult:
    """
    Open a tracking issue listing ``matches`` on ``owner/repo``.

    Never raises for API failures; the outcome is reported in the result.
    """
    if not token:
        return IssueResult(success=False, error="GitHub token required to create issues")

    github_client = Github(auth=Auth.Token(token))
    try:
        gh_repo = github_client.get_repo(f"{owner}/{repo}")
        issue = gh_repo.create_issue(title=ISSUE_TITLE, body=build_issue_body(matches), labels=ISSUE_LABELS)
        logger.info(f"Created issue {issue.html_url}", extra={"repo": f"{owner}/{repo}"})
        return IssueResult(success=True, issue_url=issue.html_url)
    except GithubException as e:
        if e.status == 410 or "issues are disabled" in str(e).lower():
            error = ISSUES_DISABLED_MESSAGE
        else:
            detail = e.data.get("message") if isinstance(e.data, dict) else None
            error = f"GitHub API error: {e.status}" + (f" {detail}" if detail else "")
        logger.error(f"Failed to create issue on {owner}/{repo}: {error}")
        return IssueResult(success=False, error=error)
    finally:
        github_client.close()


# ===================================================================
# RESULT RENDERING
# ===================================================================

def summarize_matches(matches: Sequence[SecretMatch]) -> Dict[Severity, int]:
    counts = {severity: 0 for severity in Severity}
    for match in matches:
        counts[match.severity] += 1
    return counts


def print_summary(target: str, matches: Sequence[SecretMatch]) -> None:
    counts = summarize_matches(matches)
    print(f"{'=' * 70}")
    print(f"Scan results for {target}")
    print(f"{'=' * 70}")
    for match in matches:
        print(f"[{match.severity.value.upper():8}] {match.file}:{match.line}  {match.name}")
        print(f"           {match.content}")
    print(f"{'-' * 70}")
    print(f"  Critical: {counts[Severity.CRITICAL]}")
    print(f"  High:     {counts[Severity.HIGH]}")
    print(f"  Medium:   {counts[Severity.MEDIUM]}")
    print(f"  Low:      {counts[Severity.LOW]}")
    print(f"  Total:    {len(matches)}")
    print(f"{'=' * 70}")


class ScanProgressBar:
    """Progress sink drawing a tqdm bar of scanned files."""

    def __init__(self, total: int):
        self.bar = tqdm(total=total, desc="Scanning", unit="file")

    def __call__(self, message: str) -> None:
        if message.startswith(FILE_PROGRESS.format("")):
            self.bar.update(1)
        self.bar.set_postfix_str(message)

    def close(self) -> None:
        self.bar.close()


# ===================================================================
# COMMAND LINE INTERFACE
# ===================================================================

def parse_target(target: str) -> Tuple[str, str]:
    """Split ``owner/repo`` (a full github.com URL is accepted too)."""
    cleaned = target.strip().rstrip("/")
    if cleaned.endswith(".git"):
        cleaned = cleaned[:-4]
    for prefix in ("https://github.com/", "http://github.com/", "github.com/"):
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix):]
            break
    parts = cleaned.split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Expected OWNER/REPO, got: {target}")
    return parts[0], parts[1]


def parse_arguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments and display help information."""
    parser = argparse.ArgumentParser(
        description='Scan a GitHub repository for leaked credentials through the REST API',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
ENVIRONMENT VARIABLES:
  GITHUB_TOKEN             GitHub token (optional; required for --create-issue)
  GITHUB_API_MAX_RETRIES   Attempts per request (default: 3)
  SCAN_MAX_DEPTH           Directory levels below the root (default: 3)
  SCAN_MAX_FILES           Files inspected per scan (default: 100)

USAGE EXAMPLES:
  python repo_secret_scanner.py octocat/hello-world
  python repo_secret_scanner.py https://github.com/octocat/hello-world --output-format json
  python repo_secret_scanner.py octocat/hello-world --create-issue
  python repo_secret_scanner.py --search "topic:dotenv" --page 2
  python repo_secret_scanner.py --rate-limit

EXIT CODES:
  0   Success
  1   Error (bad arguments, API failure, etc.)
  130 Interrupted by user (Ctrl+C)
        '''
    )

    parser.add_argument('target', nargs='?', metavar='OWNER/REPO', help='Repository to scan')
    parser.add_argument('--search', metavar='QUERY', help='Search repositories instead of scanning')
    parser.add_argument('--page', type=int, default=1, help='Search results page (default: 1)')
    parser.add_argument('--rate-limit', action='store_true', help='Show the remaining API quota')
    parser.add_argument('--token', default=GITHUB_TOKEN, help='GitHub token (default: $GITHUB_TOKEN)')
    parser.add_argument('--max-depth', type=int, default=SCAN_MAX_DEPTH,
                        help=f'Directory levels below the root (default: {SCAN_MAX_DEPTH})')
    parser.add_argument('--max-files', type=int, default=SCAN_MAX_FILES,
                        help=f'Files inspected per scan (default: {SCAN_MAX_FILES})')
    parser.add_argument('--create-issue', action='store_true',
                        help='Open an issue on the scanned repository when secrets are found')
    parser.add_argument('--output-format', choices=['text', 'json'], default='text',
                        help='Result format on stdout (default: text)')
    parser.add_argument('--log-format', choices=['text', 'json'], default=LOG_FORMAT,
                        help=f'Logging format (default: {LOG_FORMAT})')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose debug logging')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    args = parser.parse_args(argv)
    actions = sum([bool(args.target), bool(args.search), args.rate_limit])
    if actions != 1:
        parser.error("choose exactly one of OWNER/REPO, --search or --rate-limit")
    return args


def _print_search_result(result: SearchResult, page: int, output_format: str) -> None:
    if output_format == "json":
        print(json.dumps(asdict(result), indent=2))
        return
    print(f"{result.total_count} repositories (page {page})"
          + (" - results incomplete" if result.incomplete_results else ""))
    for repo in result.items:
        print(f"  ★ {repo.stargazers_count:>7}  {repo.full_name}  {repo.description or ''}")


def _print_rate_limit(info: RateLimitInfo, output_format: str) -> None:
    if output_format == "json":
        print(json.dumps(asdict(info)))
        return
    reset_at = datetime.fromtimestamp(info.reset / 1000, tz=timezone.utc)
    print(f"{info.remaining}/{info.limit} requests remaining, resets at {reset_at.isoformat()}")


def _run_scan(args: argparse.Namespace) -> int:
    owner, repo = parse_target(args.target)
    target = f"{owner}/{repo}"

    logger.info("=" * 70)
    logger.info("REPOSITORY SECRET SCANNER")
    logger.info("=" * 70)
    logger.info(f"Repository: {target}")
    logger.info(f"Authenticated: {'yes' if args.token else 'no (60 requests/hour)'}")
    logger.info(f"Max depth: {args.max_depth}, max files: {args.max_files}")
    logger.info("=" * 70)

    progress = ScanProgressBar(args.max_files)
    try:
        matches = asyncio.run(scan_repository(
            owner, repo, on_progress=progress, token=args.token,
            max_depth=args.max_depth, max_files=args.max_files,
        ))
    finally:
        progress.close()

    if args.output_format == "json":
        print(json.dumps([m.to_dict() for m in matches], indent=2))
    else:
        print_summary(target, matches)

    if args.create_issue:
        if not matches:
            logger.info("No secrets found, no issue created")
        else:
            result = create_security_issue(owner, repo, matches, args.token)
            if not result.success:
                logger.error(result.error)
                return 1
            logger.info(f"Issue created: {result.issue_url}")

    logger.info(f"Rate limiter stats: {rate_limiter.get_stats()}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point with validation and error handling."""
    args = parse_arguments(argv)

    global logger
    logger = setup_logging(args.log_format)
    if args.verbose:
        logger.setLevel(logging.DEBUG)

    try:
        if args.search:
            result = asyncio.run(search_repositories(args.search, args.page, token=args.token))
            _print_search_result(result, args.page, args.output_format)
            return 0

        if args.rate_limit:
            _print_rate_limit(asyncio.run(get_rate_limit_info(args.token)), args.output_format)
            return 0

        return _run_scan(args)

    except KeyboardInterrupt:
        logger.warning("Scan interrupted by user")
        return 130
    except (GitHubAPIError, ValueError) as e:
        logger.error(str(e), exc_info=args.verbose)
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
