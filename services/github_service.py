# GitHub crawler - tree listing, file filtering, content fetch and rate-limit introspection

import httpx
import logging
import re
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from urllib.parse import quote
from config.settings import get_settings, Settings
from schemas.scan import FileRef, RateLimitStatus
from utils.errors import (
    FileFetchError,
    GitHubAPIError,
    NotConnectedError,
    NotFoundError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

FALLBACK_BRANCH = "master"

INCLUDE_PATTERNS = [
    re.compile(r"\.(js|ts|jsx|tsx|json|env|md|yml|yaml|toml|ini)$"),
    re.compile(r"\.(py|rb|php|go|java|cs|cpp|c|h)$"),
    re.compile(r"\.(sh|bash|zsh|fish|ps1|bat|cmd)$"),
    re.compile(r"(^|/)\.env"),
    re.compile(r"config$"),
    re.compile(r"secrets?$"),
]

EXCLUDE_PATTERNS = [
    re.compile(r"(^|/)node_modules/"),
    re.compile(r"(^|/)\.git/"),
    re.compile(r"(^|/)\.next/"),
    re.compile(r"(^|/)dist/"),
    re.compile(r"(^|/)build/"),
    re.compile(r"(^|/)coverage/"),
    re.compile(r"\.min\."),
    re.compile(r"\.bundle\."),
    re.compile(r"\.(png|jpg|jpeg|gif|svg|ico|pdf|zip|tar|gz)$"),
    re.compile(r"package-lock\.json$"),
    re.compile(r"yarn\.lock$"),
]


def should_scan_file(file_path: str) -> bool:
    """Deny-list wins over the allow-list"""
    name = file_path.lower()
    if any(pattern.search(name) for pattern in EXCLUDE_PATTERNS):
        return False
    return any(pattern.search(name) for pattern in INCLUDE_PATTERNS)


class GitHubService:
    """Read-only client for the GitHub REST API used by the scanner"""

    def __init__(
        self,
        access_token: Optional[str] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.settings = settings or get_settings()
        self.access_token = access_token or self.settings.github_token or None
        self.api_url = self.settings.github_api_url.rstrip("/")
        self.raw_url = self.settings.github_raw_url.rstrip("/")
        self._transport = transport
        self.headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "keyscan-backend/1.0.0"
        }
        if self.access_token:
            self.headers["Authorization"] = f"token {self.access_token}"

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.github_timeout, transport=self._transport)

    async def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET an API endpoint and classify failures"""
        try:
            async with self._client() as client:
                response = await client.get(f"{self.api_url}{path}", params=params, headers=self.headers)
        except httpx.RequestError as e:
            logger.error(f"GitHub API request to {path} failed: {type(e).__name__}")
            raise GitHubAPIError(f"GitHub API request failed: {type(e).__name__}") from e

        if response.status_code != 200:
            self._raise_for_status(response)

        return response.json()

    @staticmethod
    def _raise_for_status(response: httpx.Response):
        message = f"GitHub API error: {response.status_code}"
        try:
            body = response.json()
            if isinstance(body, dict) and body.get("message"):
                message = body["message"]
        except ValueError:
            pass

        status = response.status_code
        remaining = response.headers.get("x-ratelimit-remaining")

        if (status == 403 and remaining == "0") or status == 429:
            reset = response.headers.get("x-ratelimit-reset")
            reset_time = (
                datetime.fromtimestamp(int(reset), tz=timezone.utc)
                if reset and reset.isdigit()
                else datetime.now(timezone.utc)
            )
            logger.warning(f"GitHub rate limit exceeded, resets at {reset_time.isoformat()}")
            raise RateLimitError(
                f"GitHub API rate limit exceeded. Resets at {reset_time.isoformat()}",
                reset_time=reset_time
            )
        if status == 401:
            raise NotConnectedError("GitHub authentication failed. Check your token.")
        if status == 404:
            raise NotFoundError(f"Not found: {message}")

        raise GitHubAPIError(message, status=status)

    async def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        """Get repository information including default branch and size (KB)"""
        return await self._request(f"/repos/{owner}/{repo}")

    async def list_files(self, owner: str, repo: str, branch: str = "main") -> List[FileRef]:
        """List scannable files on a branch, falling back from main to master once"""
        try:
            return await self._list_tree(owner, repo, branch)
        except NotFoundError:
            if branch != "main":
                raise
            logger.info(f"Branch 'main' not found for {owner}/{repo}, retrying with '{FALLBACK_BRANCH}'")
            return await self._list_tree(owner, repo, FALLBACK_BRANCH)

    async def _list_tree(self, owner: str, repo: str, branch: str) -> List[FileRef]:
        data = await self._request(
            f"/repos/{owner}/{repo}/git/trees/{branch}",
            params={"recursive": "1"}
        )

        tree = data.get("tree")
        if tree is None:
            raise NotFoundError(f"Repository tree not found for {owner}/{repo}@{branch}")
        if data.get("truncated"):
            logger.warning(f"Tree listing for {owner}/{repo}@{branch} was truncated by GitHub")

        files = []
        for item in tree:
            if item.get("type") != "blob":
                continue
            if not should_scan_file(item["path"]):
                continue
            if (item.get("size") or 0) > self.settings.max_file_size:
                continue

            files.append(FileRef(
                path=item["path"],
                name=item["path"].split("/")[-1],
                sha=item["sha"],
                size=item.get("size") or 0,
                branch=branch,
                download_url=f"{self.raw_url}/{owner}/{repo}/{branch}/{quote(item['path'])}"
            ))

            if len(files) >= self.settings.max_scan_files:
                logger.info(f"File cap of {self.settings.max_scan_files} reached for {owner}/{repo}")
                break

        logger.info(f"Found {len(files)} scannable files in {owner}/{repo}@{branch}")
        return files

    async def fetch_content(self, ref: FileRef) -> str:
        """Download a file body; any failure raises FileFetchError"""
        headers = {"User-Agent": self.headers["User-Agent"]}
        if self.access_token:
            headers["Authorization"] = f"token {self.access_token}"

        try:
            async with self._client() as client:
                response = await client.get(ref.download_url, headers=headers)
        except httpx.RequestError as e:
            raise FileFetchError(f"Failed to fetch {ref.path}: {type(e).__name__}") from e

        if response.status_code != 200:
            raise FileFetchError(f"Failed to fetch {ref.path}: {response.status_code} {response.reason_phrase}")

        body = response.content
        if len(body) > self.settings.max_file_size:
            raise FileFetchError(f"Skipping {ref.path}: file exceeds {self.settings.max_file_size} bytes")

        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FileFetchError(f"Skipping {ref.path}: not valid UTF-8 text") from e

        if "\x00" in text:
            raise FileFetchError(f"Skipping {ref.path}: binary content")

        return text

    async def rate_limit(self) -> RateLimitStatus:
        """Current core API quota for this token"""
        data = await self._request("/rate_limit")
        rate = data.get("rate") or data.get("resources", {}).get("core", {})
        return RateLimitStatus(
            limit=rate.get("limit", 0),
            remaining=rate.get("remaining", 0),
            used=rate.get("used", 0),
            reset_time=datetime.fromtimestamp(rate.get("reset", 0), tz=timezone.utc)
        )
