"""
Registry clients for looking up crates.

Queries crates.io for the newest version and canonical name of a crate and
reads crate names out of GitHub repositories. Lookups for a batch run
concurrently; the results are then handed to the editor through plain
synchronous callables.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Union
from urllib.parse import quote, urlparse

import httpx

from .cli_config import get_config
from .editor import crate_name_from_url
from .error_handling import (
    DocumentParseError,
    PackageLookupError,
    log_network_error,
)
from .manifest import MANIFEST_NAME, package_name_from_text
from .structured_logging import log_registry_lookup


@dataclass(frozen=True)
class PackageInfo:
    """Information about a crate from the registry."""

    name: str
    exists: bool
    version: Optional[str] = None
    max_version: Optional[str] = None
    description: Optional[str] = None
    repository: Optional[str] = None


@dataclass(frozen=True)
class RegistryCheckResult:
    """Result of looking up a crate in the registry."""

    package_name: str
    registry_type: str
    package_info: Optional[PackageInfo] = None
    error: Optional[str] = None
    check_duration_ms: Optional[int] = None

    @property
    def found(self) -> bool:
        return self.package_info is not None and self.package_info.exists


class RateLimiter:
    """Simple rate limiter to avoid hammering the registry."""

    def __init__(self, requests_per_second: float = 5.0):
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second
        self.last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limits."""
        async with self._lock:
            time_since_last = time.monotonic() - self.last_request_time
            if time_since_last < self.min_interval:
                await asyncio.sleep(self.min_interval - time_since_last)
            self.last_request_time = time.monotonic()


class BaseHTTPClient:
    """
    Base class for clients that share one httpx.AsyncClient.

    The HTTP client is created on context entry and closed on exit.
    """

    def __init__(
        self,
        rate_limit_rps: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = get_config()
        self.rate_limiter = RateLimiter(rate_limit_rps or config.network.rate_limit)
        self.timeout = httpx.Timeout(
            config.network.read_timeout, connect=config.network.connect_timeout
        )
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None
        self._headers = {
            "User-Agent": config.network.user_agent,
            "Accept": "application/json",
        }

    async def __aenter__(self):
        self.client = httpx.AsyncClient(
            timeout=self.timeout, headers=self._headers, transport=self.transport
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            await self.client.aclose()
            self.client = None

    async def _get(self, url: str) -> httpx.Response:
        if self.client is None:
            raise RuntimeError("HTTP client not initialized; use `async with`")
        await self.rate_limiter.acquire()
        return await self.client.get(url)


class CratesIOClient(BaseHTTPClient):
    """Client for crates.io (Rust package registry)."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        rate_limit_rps: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(rate_limit_rps, transport)
        self.base_url = (base_url or get_config().network.registry_url).rstrip("/")

    def get_registry_type(self) -> str:
        return "crates"

    async def check_package(self, package_name: str) -> RegistryCheckResult:
        """Look up a crate, returning its canonical name and newest version."""
        start_time = time.time()
        clean_name = package_name.strip()

        if not clean_name:
            return RegistryCheckResult(
                package_name=package_name,
                registry_type=self.get_registry_type(),
                error="Invalid package name",
            )

        url = f"{self.base_url}/{quote(clean_name, safe='')}"

        try:
            response = await self._get(url)
            duration_ms = int((time.time() - start_time) * 1000)

            if response.status_code == 404:
                log_registry_lookup(package_name, False, response_time_ms=duration_ms)
                return RegistryCheckResult(
                    package_name=package_name,
                    registry_type=self.get_registry_type(),
                    package_info=PackageInfo(name=package_name, exists=False),
                    check_duration_ms=duration_ms,
                )

            response.raise_for_status()
            crate_data = response.json().get("crate", {})

            version = (
                crate_data.get("max_stable_version")
                or crate_data.get("max_version")
                or crate_data.get("newest_version")
            )
            package_info = PackageInfo(
                name=crate_data.get("name") or clean_name,
                exists=True,
                version=version,
                max_version=crate_data.get("max_version"),
                description=crate_data.get("description"),
                repository=crate_data.get("repository"),
            )
            log_registry_lookup(
                package_name, True, version=version, response_time_ms=duration_ms
            )
            return RegistryCheckResult(
                package_name=package_name,
                registry_type=self.get_registry_type(),
                package_info=package_info,
                check_duration_ms=duration_ms,
            )

        except httpx.HTTPStatusError as e:
            log_network_error(
                f"crates.io returned {e.response.status_code} for {package_name}",
                "registry_clients",
                "check_package",
                url=url,
                status_code=e.response.status_code,
                exception=e,
            )
            return RegistryCheckResult(
                package_name=package_name,
                registry_type=self.get_registry_type(),
                error=f"crates.io returned HTTP {e.response.status_code}",
            )
        except (httpx.RequestError, ValueError) as e:
            log_network_error(
                f"crates.io lookup failed for {package_name}: {e}",
                "registry_clients",
                "check_package",
                url=url,
                exception=e,
            )
            return RegistryCheckResult(
                package_name=package_name,
                registry_type=self.get_registry_type(),
                error=f"crates.io lookup failed: {e}",
            )

    async def check_packages(
        self, package_names: Iterable[str]
    ) -> Dict[str, RegistryCheckResult]:
        """Look up several crates concurrently."""
        names = list(dict.fromkeys(package_names))
        results = await asyncio.gather(*(self.check_package(name) for name in names))
        return dict(zip(names, results))


class GitManifestClient(BaseHTTPClient):
    """Reads the crate name from the manifest of a hosted git repository."""

    def __init__(
        self,
        raw_base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(None, transport)
        self.raw_base_url = (raw_base_url or get_config().network.git_raw_url).rstrip(
            "/"
        )

    def manifest_url(self, repo_url: str) -> Optional[str]:
        """Raw Cargo.toml URL for a GitHub repository, None for other hosts."""
        parsed = urlparse(repo_url)
        if parsed.hostname not in ("github.com", "www.github.com"):
            return None
        parts = [part for part in parsed.path.split("/") if part]
        if len(parts) < 2:
            return None
        owner, repo = parts[0], parts[1]
        if repo.endswith(".git"):
            repo = repo[: -len(".git")]
        return f"{self.raw_base_url}/{owner}/{repo}/HEAD/{MANIFEST_NAME}"

    async def fetch_package_name(self, repo_url: str) -> str:
        """
        Fetch the repository manifest and return its `package.name`.

        Raises:
            PackageLookupError: If the manifest cannot be fetched or has no name
        """
        url = self.manifest_url(repo_url)
        if url is None:
            raise PackageLookupError(
                repo_url, f"Cannot read the crate name from `{repo_url}`"
            )

        try:
            response = await self._get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log_network_error(
                f"Could not fetch manifest for {repo_url}",
                "registry_clients",
                "fetch_package_name",
                url=url,
                status_code=e.response.status_code,
                exception=e,
            )
            raise PackageLookupError(
                repo_url, f"No crate manifest found in `{repo_url}`"
            ) from e
        except httpx.RequestError as e:
            log_network_error(
                f"Could not fetch manifest for {repo_url}: {e}",
                "registry_clients",
                "fetch_package_name",
                url=url,
                exception=e,
            )
            raise PackageLookupError(
                repo_url, f"Failed to reach `{repo_url}`: {e}"
            ) from e

        try:
            name = package_name_from_text(response.text, source=url)
        except DocumentParseError as e:
            raise PackageLookupError(repo_url, str(e)) from e
        if not name:
            raise PackageLookupError(
                repo_url, f"The manifest in `{repo_url}` has no `package.name`"
            )
        return name


class PrefetchedRegistry:
    """
    Synchronous view over registry results gathered ahead of time.

    Plugs into `add_dependencies` as its `resolve_latest_version`,
    `normalize_name` and `git_package_name` collaborators.
    """

    def __init__(
        self,
        results: Dict[str, RegistryCheckResult],
        git_names: Optional[Dict[str, Union[str, PackageLookupError]]] = None,
    ):
        self.results = results
        self.git_names = git_names or {}

    def resolve_latest_version(self, name: str) -> str:
        result = self.results.get(name)
        if result is None:
            raise PackageLookupError(name, f"`{name}` was not looked up")
        if result.error:
            raise PackageLookupError(name, f"Failed to resolve `{name}`: {result.error}")
        if not result.found:
            raise PackageLookupError(name, f"The crate `{name}` could not be found")
        if not result.package_info.version:
            raise PackageLookupError(name, f"The crate `{name}` has no usable version")
        return result.package_info.version

    def normalize_name(self, name: str) -> Optional[str]:
        result = self.results.get(name)
        if result is None or not result.found:
            return None
        return result.package_info.name

    def git_package_name(self, repo_url: str) -> str:
        name = self.git_names.get(repo_url)
        if name is None:
            return crate_name_from_url(repo_url)
        if isinstance(name, PackageLookupError):
            raise name
        return name


async def prefetch_lookups(
    crate_names: Iterable[str],
    git_urls: Iterable[str] = (),
    registry_transport: Optional[httpx.AsyncBaseTransport] = None,
    git_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PrefetchedRegistry:
    """
    Resolve every crate name and git repository of a batch concurrently.

    Failures are recorded per name and only raised when the editor asks for
    that name, so earlier crates of the batch are still applied.
    """
    crate_names = list(crate_names)
    git_urls = list(dict.fromkeys(git_urls))

    results: Dict[str, RegistryCheckResult] = {}
    if crate_names:
        async with CratesIOClient(transport=registry_transport) as client:
            results = await client.check_packages(crate_names)

    git_names: Dict[str, Union[str, PackageLookupError]] = {}
    if git_urls:
        async with GitManifestClient(transport=git_transport) as client:
            hosted = [url for url in git_urls if client.manifest_url(url)]
            names = await asyncio.gather(
                *(client.fetch_package_name(url) for url in hosted),
                return_exceptions=True,
            )
        for url, name in zip(hosted, names):
            if isinstance(name, BaseException) and not isinstance(
                name, PackageLookupError
            ):
                raise name
            git_names[url] = name

    return PrefetchedRegistry(results, git_names)
