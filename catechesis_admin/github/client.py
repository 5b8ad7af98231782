"""
GitHub Client — Contents API wrapper with rate-limit backoff.

Reads and writes repository files through the REST contents API. Files
travel base64-encoded; updates carry the current blob SHA, so a file
changed behind our back makes GitHub answer 409 instead of silently
overwriting it (optimistic concurrency).

Every call goes through ``request()``, which:

- waits for the rate-limit reset when fewer than ``RATE_LIMIT_BUFFER``
  calls are left,
- sleeps until reset + 1s and retries when GitHub answers 403/429 with
  no calls remaining,
- retries 5xx responses and transport errors with exponential backoff,
- feeds the shared ``github`` circuit breaker,
- turns failures into the typed errors of ``catechesis_admin.errors``.

## Configuration

- GITHUB_TOKEN: Personal access token with ``repo`` scope
- GITHUB_REPOSITORY: owner/repo
- GITHUB_BRANCH: branch to commit to (default: main)

## Usage

    from catechesis_admin.github.client import GitHubClient

    with GitHubClient(token, "paroquia/catequese") as gh:
        current = gh.get_json("config/settings.json")
        gh.commit_file("config/settings.json", json.dumps(data), "Atualizar configurações")
"""

from __future__ import annotations

import base64
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar, Union
from urllib.parse import quote

import httpx

from ..errors import (
    AppError,
    ConflictError,
    FileTooLargeError,
    GitHubAPIError,
    InvalidTokenError,
    MissingConfigurationError,
    NetworkError,
    NetworkTimeoutError,
    PermissionDeniedError,
    RateLimitError,
    RepositoryNotFoundError,
    TemporaryError,
    is_retryable,
)
from ..logging_config import LogThrottler
from ..reliability.circuit_breaker import CircuitBreaker, get_circuit_breaker

logger = logging.getLogger(__name__)

T = TypeVar("T")

API_BASE = "https://api.github.com"
USER_AGENT = "catechesis-admin/1.0"


@dataclass
class RateLimitInfo:
    """Last rate-limit numbers GitHub reported."""

    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset: Optional[float] = None   # epoch seconds
    used: Optional[int] = None

    def update_from_headers(self, headers: httpx.Headers) -> None:
        for attr, header in (
            ("limit", "x-ratelimit-limit"),
            ("remaining", "x-ratelimit-remaining"),
            ("reset", "x-ratelimit-reset"),
            ("used", "x-ratelimit-used"),
        ):
            value = headers.get(header)
            if value is not None:
                try:
                    setattr(self, attr, float(value) if attr == "reset" else int(value))
                except ValueError:
                    pass

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["reset_at"] = (
            datetime.fromtimestamp(self.reset, timezone.utc).isoformat().replace("+00:00", "Z")
            if self.reset else None
        )
        return data


@dataclass
class RepoFile:
    """A file read through the contents API."""

    path: str
    content: bytes
    sha: str
    size: int
    encoding: str = "base64"
    download_url: Optional[str] = None

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "sha": self.sha,
            "size": self.size,
            "encoding": self.encoding,
            "download_url": self.download_url,
        }


@dataclass
class CommitResult:
    """Outcome of a write."""

    success: bool
    path: Optional[str]
    sha: Optional[str] = None
    commit_sha: Optional[str] = None
    commit_url: Optional[str] = None
    files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def encode_content(content: Union[str, bytes]) -> str:
    raw = content.encode("utf-8") if isinstance(content, str) else content
    return base64.b64encode(raw).decode("ascii")


def decode_content(content_b64: str) -> bytes:
    """Decode a contents-API payload; GitHub wraps it at 60 columns."""
    return base64.b64decode("".join(content_b64.split()))


class GitHubClient:
    """
    Synchronous GitHub REST client bound to one repository.

    ``transport``, ``sleep`` and ``clock`` are injectable so tests can
    run against ``httpx.MockTransport`` without waiting.
    """

    MAX_FILE_SIZE = 100 * 1024 * 1024
    RATE_LIMIT_BUFFER = 10
    BATCH_SIZE = 5

    def __init__(
        self,
        token: str,
        repository: str,
        branch: str = "main",
        api_base: str = API_BASE,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        if not token:
            raise MissingConfigurationError("GITHUB_TOKEN")
        if not repository:
            raise MissingConfigurationError("GITHUB_REPOSITORY")

        self.repository = repository
        self.branch = branch
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.rate_limit = RateLimitInfo()
        self.breaker = circuit_breaker or get_circuit_breaker("github")
        self._sleep = sleep
        self._clock = clock
        self._throttled = LogThrottler(logger)
        self._http = httpx.Client(
            base_url=api_base,
            headers=self._get_headers(token),
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config, **kwargs) -> "GitHubClient":
        """Build a client from an ``AdminConfig``."""
        return cls(
            config.github_token,
            config.github_repository,
            branch=config.github_branch or "main",
            **kwargs,
        )

    @staticmethod
    def _get_headers(token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ── Request core ─────────────────────────────────────────────

    def _repo_path(self, suffix: str = "") -> str:
        return f"/repos/{self.repository}{suffix}"

    def _contents_path(self, path: str) -> str:
        return self._repo_path(f"/contents/{quote(path.lstrip('/'))}")

    def _wait_for_rate_limit(self) -> None:
        """Pause until reset when the remaining budget is nearly spent."""
        remaining, reset = self.rate_limit.remaining, self.rate_limit.reset
        if remaining is None or reset is None or remaining > self.RATE_LIMIT_BUFFER:
            return
        wait = reset - self._clock()
        if wait <= 0:
            return
        self._throttled.warning(
            "rate-limit-wait",
            f"GitHub rate limit low ({remaining} left), waiting {wait:.0f}s for reset",
        )
        self._sleep(wait)
        self.rate_limit.remaining = None

    def _backoff(self, attempt: int, reason: str) -> None:
        delay = self.backoff_base * (2 ** attempt)
        logger.warning(f"GitHub request failed ({reason}), retrying in {delay:.0f}s")
        self._sleep(delay)

    def request(
        self,
        method: str,
        path: str,
        allow_404: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send one API request with retries.

        Returns the response for 2xx (and 404 when ``allow_404``);
        raises a typed ``AppError`` otherwise.
        """
        attempt = 0
        while True:
            self._wait_for_rate_limit()

            if not self.breaker.allow_request():
                raise TemporaryError(
                    "GitHub API temporariamente indisponível, aguarde alguns segundos",
                    details={"retry_in_seconds": round(self.breaker.time_until_retry(), 1)},
                )

            try:
                response = self._http.request(method, path, **kwargs)
            except httpx.TimeoutException as e:
                self.breaker.record_failure()
                if attempt < self.max_retries:
                    self._backoff(attempt, "timeout")
                    attempt += 1
                    continue
                raise NetworkTimeoutError(f"Tempo esgotado ao acessar {path}") from e
            except httpx.TransportError as e:
                self.breaker.record_failure()
                if attempt < self.max_retries:
                    self._backoff(attempt, type(e).__name__)
                    attempt += 1
                    continue
                raise NetworkError(f"Erro de rede ao acessar GitHub: {e}") from e

            self.rate_limit.update_from_headers(response.headers)

            if self._is_rate_limited(response):
                reset = self.rate_limit.reset
                if attempt < self.max_retries:
                    wait = self._rate_limit_wait(response)
                    self._throttled.warning(
                        "rate-limited",
                        f"GitHub rate limit exceeded, waiting {wait:.0f}s",
                    )
                    self._sleep(wait)
                    self.rate_limit.remaining = None
                    attempt += 1
                    continue
                raise RateLimitError(reset_at=reset, status_code=response.status_code)

            if response.status_code >= 500:
                self.breaker.record_failure()
                if attempt < self.max_retries:
                    self._backoff(attempt, f"HTTP {response.status_code}")
                    attempt += 1
                    continue
                raise self._error_for(response)

            # Anything below 500 means GitHub itself is up.
            self.breaker.record_success()

            if response.is_success or (allow_404 and response.status_code == 404):
                return response
            raise self._error_for(response)

    def _is_rate_limited(self, response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        if response.status_code != 403:
            return False
        return self.rate_limit.remaining == 0 or "retry-after" in response.headers

    def _rate_limit_wait(self, response: httpx.Response) -> float:
        retry_after = response.headers.get("retry-after")
        if retry_after and retry_after.isdigit():
            return float(retry_after)
        if self.rate_limit.reset:
            return max(0.0, self.rate_limit.reset - self._clock()) + 1
        return 60.0

    @staticmethod
    def _message(response: httpx.Response) -> str:
        try:
            return response.json().get("message", "") or response.reason_phrase
        except (ValueError, AttributeError):
            return response.text[:200] or response.reason_phrase

    def _error_for(self, response: httpx.Response) -> AppError:
        status = response.status_code
        message = self._message(response)
        details = {"url": str(response.request.url), "github_message": message}

        if status == 401:
            return InvalidTokenError(
                "Token do GitHub inválido ou expirado", status_code=status, details=details,
            )
        if status == 403:
            if "rate limit" in message.lower():
                return RateLimitError(reset_at=self.rate_limit.reset, status_code=status, details=details)
            return PermissionDeniedError(
                f"Sem permissão para esta operação: {message}", status_code=status, details=details,
            )
        if status == 404:
            return RepositoryNotFoundError(
                f"Recurso não encontrado: {response.request.url.path}",
                status_code=status, details=details,
            )
        if status == 409:
            return ConflictError(
                f"Conflito ao atualizar: {message}", status_code=status, details=details,
            )
        return GitHubAPIError(
            f"Erro da API do GitHub ({status}): {message}", status_code=status, details=details,
        )

    # ── Contents API ─────────────────────────────────────────────

    def get_file(self, path: str, ref: Optional[str] = None) -> Optional[RepoFile]:
        """
        Read one file.

        Returns None when the file does not exist. Files over 1 MB come
        back without inline content and are fetched through the blobs API.
        """
        response = self.request(
            "GET",
            self._contents_path(path),
            params={"ref": ref or self.branch},
            allow_404=True,
        )
        if response.status_code == 404:
            return None

        data = response.json()
        if isinstance(data, list) or data.get("type") == "dir":
            raise GitHubAPIError(f"{path} é um diretório, não um arquivo")

        encoding = data.get("encoding") or "base64"
        if data.get("content"):
            content = decode_content(data["content"])
        else:
            content = self._get_blob(data["sha"])
            encoding = "base64"

        return RepoFile(
            path=data.get("path", path),
            content=content,
            sha=data["sha"],
            size=data.get("size", len(content)),
            encoding=encoding,
            download_url=data.get("download_url"),
        )

    def _get_blob(self, sha: str) -> bytes:
        response = self.request("GET", self._repo_path(f"/git/blobs/{sha}"))
        return decode_content(response.json().get("content", ""))

    def get_text(self, path: str, ref: Optional[str] = None) -> Optional[str]:
        repo_file = self.get_file(path, ref)
        return repo_file.text if repo_file else None

    def get_json(self, path: str, ref: Optional[str] = None) -> Optional[Any]:
        text = self.get_text(path, ref)
        if text is None:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise GitHubAPIError(f"{path} não contém JSON válido: {e}") from e

    def get_multiple_files(
        self,
        paths: Iterable[str],
        ref: Optional[str] = None,
    ) -> Dict[str, Union[RepoFile, None, str]]:
        """
        Read several files, ``BATCH_SIZE`` at a time.

        Each path maps to its ``RepoFile``, ``None`` when missing, or the
        error message when the read failed. One failure does not abort
        the rest.
        """
        paths = list(paths)
        files: Dict[str, Union[RepoFile, None, str]] = {}

        with ThreadPoolExecutor(max_workers=self.BATCH_SIZE) as pool:
            for start in range(0, len(paths), self.BATCH_SIZE):
                batch = paths[start:start + self.BATCH_SIZE]
                futures = {p: pool.submit(self.get_file, p, ref) for p in batch}
                for p, future in futures.items():
                    try:
                        files[p] = future.result()
                    except AppError as e:
                        files[p] = e.message
        return files

    def file_exists(self, path: str, ref: Optional[str] = None) -> bool:
        response = self.request(
            "GET",
            self._contents_path(path),
            params={"ref": ref or self.branch},
            allow_404=True,
        )
        return response.status_code != 404

    def get_file_sha(self, path: str, ref: Optional[str] = None) -> Optional[str]:
        response = self.request(
            "GET",
            self._contents_path(path),
            params={"ref": ref or self.branch},
            allow_404=True,
        )
        if response.status_code == 404:
            return None
        data = response.json()
        return None if isinstance(data, list) else data.get("sha")

    def commit_file(
        self,
        path: str,
        content: Union[str, bytes],
        message: str,
        branch: Optional[str] = None,
        sha: Optional[str] = None,
    ) -> CommitResult:
        """
        Create or update one file.

        The current blob SHA is looked up unless given; a stale SHA makes
        GitHub answer 409 and raises ``ConflictError``.
        """
        raw = content.encode("utf-8") if isinstance(content, str) else content
        if len(raw) > self.MAX_FILE_SIZE:
            raise FileTooLargeError(len(raw), self.MAX_FILE_SIZE)

        branch = branch or self.branch
        if sha is None:
            sha = self.get_file_sha(path, ref=branch)

        body: Dict[str, Any] = {
            "message": message,
            "content": encode_content(raw),
            "branch": branch,
        }
        if sha:
            body["sha"] = sha

        response = self.request("PUT", self._contents_path(path), json=body)
        data = response.json()
        commit = data.get("commit") or {}
        result = CommitResult(
            success=True,
            path=path,
            sha=(data.get("content") or {}).get("sha"),
            commit_sha=commit.get("sha"),
            commit_url=commit.get("html_url"),
            files=[path],
        )
        logger.info(f"Committed {path} ({(result.commit_sha or 'unknown')[:8]})")
        return result

    def commit_file_with_retry(
        self,
        path: str,
        content: Union[str, bytes],
        message: str,
        branch: Optional[str] = None,
        max_retries: int = 3,
    ) -> CommitResult:
        """Commit, re-reading the SHA after each 409 conflict."""
        attempt = 1
        while True:
            try:
                return self.commit_file(path, content, message, branch=branch)
            except ConflictError:
                if attempt >= max_retries:
                    raise
                logger.warning(f"SHA conflict on {path}, retry {attempt}/{max_retries - 1}")
                self._sleep(1.0 * attempt)
                attempt += 1

    def commit_multiple_files(
        self,
        files: Dict[str, Union[str, bytes]],
        message: str,
        branch: Optional[str] = None,
    ) -> CommitResult:
        """
        Write several files in a single commit through the git data API.

        ref → head commit → blobs → tree → commit → ref update.
        """
        if not files:
            raise GitHubAPIError("Nenhum arquivo para enviar")
        for path, content in files.items():
            size = len(content.encode("utf-8") if isinstance(content, str) else content)
            if size > self.MAX_FILE_SIZE:
                raise FileTooLargeError(size, self.MAX_FILE_SIZE, details={"path": path})

        branch = branch or self.branch
        ref = self.request("GET", self._repo_path(f"/git/ref/heads/{quote(branch)}")).json()
        head_sha = ref["object"]["sha"]
        head = self.request("GET", self._repo_path(f"/git/commits/{head_sha}")).json()

        tree_entries = []
        for path, content in files.items():
            blob = self.request(
                "POST",
                self._repo_path("/git/blobs"),
                json={"content": encode_content(content), "encoding": "base64"},
            ).json()
            tree_entries.append({
                "path": path.lstrip("/"),
                "mode": "100644",
                "type": "blob",
                "sha": blob["sha"],
            })

        tree = self.request(
            "POST",
            self._repo_path("/git/trees"),
            json={"base_tree": head["tree"]["sha"], "tree": tree_entries},
        ).json()

        commit = self.request(
            "POST",
            self._repo_path("/git/commits"),
            json={"message": message, "tree": tree["sha"], "parents": [head_sha]},
        ).json()

        self.request(
            "PATCH",
            self._repo_path(f"/git/refs/heads/{quote(branch)}"),
            json={"sha": commit["sha"]},
        )

        logger.info(f"Committed {len(files)} files in {commit['sha'][:8]}")
        return CommitResult(
            success=True,
            path=None,
            commit_sha=commit["sha"],
            commit_url=commit.get("html_url"),
            files=list(files),
        )

    # ── Repository ───────────────────────────────────────────────

    def get_recent_commits(self, limit: int = 10, path: Optional[str] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"per_page": limit, "sha": self.branch}
        if path:
            params["path"] = path
        commits = self.request("GET", self._repo_path("/commits"), params=params).json()
        return [
            {
                "sha": c["sha"],
                "short_sha": c["sha"][:7],
                "message": (c.get("commit") or {}).get("message", ""),
                "author": ((c.get("commit") or {}).get("author") or {}).get("name"),
                "date": ((c.get("commit") or {}).get("author") or {}).get("date"),
                "url": c.get("html_url"),
            }
            for c in commits
        ]

    def create_pull_request(
        self,
        title: str,
        head: str,
        base: Optional[str] = None,
        body: str = "",
    ) -> Dict[str, Any]:
        data = self.request(
            "POST",
            self._repo_path("/pulls"),
            json={"title": title, "head": head, "base": base or self.branch, "body": body},
        ).json()
        return {"number": data.get("number"), "url": data.get("html_url"), "state": data.get("state")}

    def check_rate_limit(self) -> Dict[str, Any]:
        """Ask GitHub for the current budget (this call is free)."""
        data = self.request("GET", "/rate_limit").json()
        core = (data.get("resources") or {}).get("core") or data.get("rate") or {}
        self.rate_limit.limit = core.get("limit")
        self.rate_limit.remaining = core.get("remaining")
        self.rate_limit.reset = core.get("reset")
        self.rate_limit.used = core.get("used")
        return self.rate_limit.to_dict()

    def get_repository_info(self) -> Dict[str, Any]:
        data = self.request("GET", self._repo_path()).json()
        owner = (data.get("owner") or {}).get("login", "")
        return {
            "name": data.get("name"),
            "full_name": data.get("full_name"),
            "private": data.get("private"),
            "default_branch": data.get("default_branch"),
            "has_pages": data.get("has_pages", False),
            "pages_url": f"https://{owner}.github.io/{data.get('name')}" if data.get("has_pages") else None,
            "updated_at": data.get("updated_at"),
            "permissions": data.get("permissions") or {},
        }

    def validate_access(self) -> Dict[str, Any]:
        """
        Check the token identity and its repository permissions.

        Writing needs ``push`` or ``admin``.
        """
        try:
            user = self.request("GET", "/user").json()
            repo = self.get_repository_info()
        except AppError as e:
            return {"valid": False, "message": e.message, "code": e.code}

        permissions = repo["permissions"]
        can_push = bool(permissions.get("push") or permissions.get("admin"))
        return {
            "valid": can_push,
            "user": user.get("login"),
            "repository": repo["full_name"],
            "permissions": permissions,
            "can_push": can_push,
            "message": "Acesso validado" if can_push else "Token sem permissão de escrita no repositório",
        }

    def test_connection(self) -> Dict[str, Any]:
        try:
            info = self.get_repository_info()
        except AppError as e:
            return {"success": False, "message": e.message, "code": e.code}
        return {
            "success": True,
            "message": f"Conectado a {info['full_name']}",
            "repository": info,
            "rate_limit": self.rate_limit.to_dict(),
        }

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        max_retries: int = 3,
        base_delay: float = 5.0,
    ) -> T:
        """
        Run ``operation``, retrying transient failures with backoff.

        Only errors ``is_retryable`` accepts are retried; the rest
        propagate immediately.
        """
        attempt = 0
        while True:
            try:
                return operation()
            except AppError as e:
                if attempt >= max_retries or not is_retryable(e):
                    raise
                delay = base_delay * (2 ** attempt)
                logger.warning(f"Operation failed ({e.code}), retrying in {delay:.0f}s")
                self._sleep(delay)
                attempt += 1
