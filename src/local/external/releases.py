import json
import logging
import requests
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.local.config import effective_settings as config
from src.local.errors import ReleaseFetchError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReleaseAsset:
    name: str
    download_url: str
    size: int = 0


@dataclass(frozen=True)
class ReleaseMetadata:
    tag: str
    assets: List[ReleaseAsset] = field(default_factory=list)

    def find_asset(self, binary_asset) -> Optional[ReleaseAsset]:
        """Returns the first asset whose name matches the descriptor's pattern."""
        return next((a for a in self.assets if binary_asset.matches_asset(a.name)), None)


def fetch_json(url: str, timeout: Optional[float] = None, token: Optional[str] = None) -> Any:
    """
    GETs a JSON document from the GitHub API, following redirects.

    :param url: The API URL.
    :param timeout: Seconds before the request is abandoned.
    :param token: Optional bearer token for rate-limit relief.
    :raises ReleaseFetchError: On transport errors, non-200 responses or invalid JSON.
    """
    headers = {
        "User-Agent": config.USER_AGENT,
        "Accept": "application/vnd.github+json",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        res = requests.get(
            url,
            headers=headers,
            timeout=timeout or config.RELEASE_FETCH_TIMEOUT,
            allow_redirects=True,
        )
    except requests.RequestException as e:
        raise ReleaseFetchError(f"Could not reach {url}: {e}") from e

    if res.status_code != 200:
        raise ReleaseFetchError(f"GitHub API returned {res.status_code}")
    try:
        return res.json()
    except (ValueError, json.JSONDecodeError) as e:
        raise ReleaseFetchError("Failed to parse GitHub release JSON") from e


def parse_release(data: Any) -> ReleaseMetadata:
    """Builds release metadata from a GitHub release payload."""
    if not isinstance(data, dict) or not isinstance(data.get("assets"), list):
        raise ReleaseFetchError("Release info did not contain an asset list")

    assets = []
    for entry in data["assets"]:
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name") or "").strip()
        url = entry.get("browser_download_url") or entry.get("url")
        if not name or not url:
            continue
        try:
            size = int(entry.get("size") or 0)
        except (TypeError, ValueError):
            size = 0
        assets.append(ReleaseAsset(name=name, download_url=str(url), size=size))

    tag = str(data.get("tag_name") or data.get("name") or "").strip()
    return ReleaseMetadata(tag=tag, assets=assets)


class ReleaseClient:
    """
    Looks up the latest (or a pinned) release of a GitHub repository.

    With `memoize` the first successful lookup is kept for the lifetime of
    the client; otherwise every `fetch()` queries the API again.
    """

    def __init__(
        self,
        repo: Optional[str] = None,
        version_override: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        memoize: bool = False,
    ) -> None:
        self.repo = repo or config.LLAMA_CPP_REPO
        self.version_override = version_override
        self.token = token
        self.timeout = timeout
        self.memoize = memoize
        self._cached: Optional[ReleaseMetadata] = None

    @classmethod
    def from_settings(cls, memoize: bool = False) -> "ReleaseClient":
        return cls(
            repo=config.LLAMA_CPP_REPO,
            version_override=config.LLAMA_CPP_VERSION,
            token=config.GITHUB_TOKEN,
            timeout=config.RELEASE_FETCH_TIMEOUT,
            memoize=memoize,
        )

    @property
    def url(self) -> str:
        base = f"{config.GITHUB_API_URL}/repos/{self.repo}/releases"
        if self.version_override:
            return f"{base}/tags/{self.version_override}"
        return f"{base}/latest"

    def fetch(self) -> ReleaseMetadata:
        """:raises ReleaseFetchError: If the release cannot be fetched or parsed."""
        if self.memoize and self._cached is not None:
            return self._cached

        log.info(f"Fetching release info from {self.url}")
        release = parse_release(fetch_json(self.url, timeout=self.timeout, token=self.token))
        log.debug(f"Release {release.tag or '?'} lists {len(release.assets)} assets.")
        if self.memoize:
            self._cached = release
        return release

    def clear_cache(self) -> None:
        self._cached = None
