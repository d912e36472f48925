"""
Integration tests for crate-add.
Exercises the registry clients against mocked HTTP transports and the full
read, resolve, edit and write cycle on a manifest file.
"""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from crate_add.cli_config import reset_config
from crate_add.editor import AddRequest
from crate_add.error_handling import (
    ConflictingDependencyKind,
    DocumentParseError,
    ManifestNotFoundError,
    PackageLookupError,
)
from crate_add.main import run_add
from crate_add.manifest import Manifest, find_manifest
from crate_add.registry_clients import (
    CratesIOClient,
    GitManifestClient,
    PrefetchedRegistry,
    prefetch_lookups,
)

from conftest import SAMPLE_MANIFEST, make_registry

CRATES = {
    "serde": {"name": "serde", "max_version": "1.0.210", "max_stable_version": "1.0.210"},
    "linked-hash-map": {"name": "linked-hash-map", "max_version": "0.5.6"},
    "prerelease-only": {"name": "prerelease-only", "max_version": "0.2.0-alpha.1"},
}


def crates_io_handler(request: httpx.Request) -> httpx.Response:
    name = request.url.path.rsplit("/", 1)[-1]
    if name == "broken":
        return httpx.Response(500, text="internal error")
    canonical = name.replace("_", "-")
    if canonical not in CRATES:
        return httpx.Response(404, json={"errors": [{"detail": "Not Found"}]})
    return httpx.Response(200, json={"crate": CRATES[canonical]})


def raw_github_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/killercup/cargo-edit/HEAD/Cargo.toml":
        return httpx.Response(
            200, text='[package]\nname = "cargo-edit"\nversion = "0.3.0"\n'
        )
    return httpx.Response(404, text="404: Not Found")


@pytest.fixture
def crates_io_transport():
    return httpx.MockTransport(crates_io_handler)


@pytest.fixture
def github_transport():
    return httpx.MockTransport(raw_github_handler)


class TestCratesIOClient:
    """Test crates.io lookups."""

    @pytest.mark.asyncio
    async def test_existing_crate(self, crates_io_transport):
        async with CratesIOClient(rate_limit_rps=100, transport=crates_io_transport) as client:
            result = await client.check_package("serde")

        assert result.found
        assert result.error is None
        assert result.package_info.version == "1.0.210"

    @pytest.mark.asyncio
    async def test_canonical_name(self, crates_io_transport):
        async with CratesIOClient(rate_limit_rps=100, transport=crates_io_transport) as client:
            result = await client.check_package("linked_hash_map")

        assert result.package_info.name == "linked-hash-map"
        assert result.package_info.version == "0.5.6"

    @pytest.mark.asyncio
    async def test_falls_back_to_max_version(self, crates_io_transport):
        async with CratesIOClient(rate_limit_rps=100, transport=crates_io_transport) as client:
            result = await client.check_package("prerelease-only")

        assert result.package_info.version == "0.2.0-alpha.1"

    @pytest.mark.asyncio
    async def test_missing_crate(self, crates_io_transport):
        async with CratesIOClient(rate_limit_rps=100, transport=crates_io_transport) as client:
            result = await client.check_package("no-such-crate")

        assert not result.found
        assert result.error is None

    @pytest.mark.asyncio
    async def test_server_error(self, crates_io_transport):
        async with CratesIOClient(rate_limit_rps=100, transport=crates_io_transport) as client:
            result = await client.check_package("broken")

        assert not result.found
        assert "500" in result.error

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        transport = httpx.MockTransport(refuse)
        async with CratesIOClient(rate_limit_rps=100, transport=transport) as client:
            result = await client.check_package("serde")

        assert result.error is not None
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_custom_registry_url(self, monkeypatch):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={"crate": CRATES["serde"]})

        monkeypatch.setenv("CRATE_ADD_REGISTRY_URL", "https://registry.example.com/api/v1/crates")
        reset_config()

        async with CratesIOClient(
            rate_limit_rps=100, transport=httpx.MockTransport(handler)
        ) as client:
            await client.check_package("serde")

        assert seen == ["https://registry.example.com/api/v1/crates/serde"]

    @pytest.mark.asyncio
    async def test_client_requires_context(self):
        client = CratesIOClient()
        with pytest.raises(RuntimeError):
            await client._get("https://crates.io/api/v1/crates/serde")

    @pytest.mark.asyncio
    async def test_check_packages(self, crates_io_transport):
        async with CratesIOClient(rate_limit_rps=100, transport=crates_io_transport) as client:
            results = await client.check_packages(["serde", "no-such-crate", "serde"])

        assert list(results) == ["serde", "no-such-crate"]
        assert results["serde"].found
        assert not results["no-such-crate"].found


class TestGitManifestClient:
    """Test reading crate names from hosted repositories."""

    @pytest.mark.parametrize(
        "repo_url,expected",
        [
            (
                "https://github.com/killercup/cargo-edit.git",
                "https://raw.githubusercontent.com/killercup/cargo-edit/HEAD/Cargo.toml",
            ),
            (
                "https://github.com/killercup/cargo-edit",
                "https://raw.githubusercontent.com/killercup/cargo-edit/HEAD/Cargo.toml",
            ),
            ("https://gitlab.com/group/project.git", None),
            ("https://github.com/killercup", None),
        ],
    )
    def test_manifest_url(self, repo_url, expected):
        assert GitManifestClient().manifest_url(repo_url) == expected

    @pytest.mark.asyncio
    async def test_fetch_package_name(self, github_transport):
        async with GitManifestClient(transport=github_transport) as client:
            name = await client.fetch_package_name(
                "https://github.com/killercup/cargo-edit.git"
            )

        assert name == "cargo-edit"

    @pytest.mark.asyncio
    async def test_missing_manifest(self, github_transport):
        async with GitManifestClient(transport=github_transport) as client:
            with pytest.raises(PackageLookupError):
                await client.fetch_package_name("https://github.com/someone/empty")

    @pytest.mark.asyncio
    async def test_manifest_without_name(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, text="[workspace]\nmembers = []\n")
        )
        async with GitManifestClient(transport=transport) as client:
            with pytest.raises(PackageLookupError):
                await client.fetch_package_name("https://github.com/someone/workspace")


class TestPrefetch:
    """Test batch lookups and the synchronous registry view."""

    @pytest.mark.asyncio
    async def test_prefetch_lookups(self, crates_io_transport, github_transport):
        registry = await prefetch_lookups(
            ["serde", "linked_hash_map", "no-such-crate"],
            ["https://github.com/killercup/cargo-edit.git", "git://example.org/widget.git"],
            registry_transport=crates_io_transport,
            git_transport=github_transport,
        )

        assert registry.resolve_latest_version("serde") == "1.0.210"
        assert registry.normalize_name("linked_hash_map") == "linked-hash-map"
        assert registry.normalize_name("no-such-crate") is None
        with pytest.raises(PackageLookupError):
            registry.resolve_latest_version("no-such-crate")
        assert (
            registry.git_package_name("https://github.com/killercup/cargo-edit.git")
            == "cargo-edit"
        )
        assert registry.git_package_name("git://example.org/widget.git") == "widget"

    @pytest.mark.asyncio
    async def test_prefetch_keeps_git_failures(self, github_transport):
        registry = await prefetch_lookups(
            [], ["https://github.com/someone/empty"], git_transport=github_transport
        )

        with pytest.raises(PackageLookupError):
            registry.git_package_name("https://github.com/someone/empty")

    def test_unknown_name_is_a_lookup_error(self):
        with pytest.raises(PackageLookupError):
            PrefetchedRegistry({}).resolve_latest_version("serde")


class TestRunAdd:
    """Test the full add cycle against a manifest on disk."""

    def test_writes_manifest(self, sample_manifest):
        registry = make_registry({"serde": "1.0.210", "rand": "0.8.5"})

        with patch(
            "crate_add.main.prefetch_lookups", new=AsyncMock(return_value=registry)
        ) as mock_prefetch:
            path, result = run_add(
                AddRequest(crates=["serde", "rand"], upgrade="minor"), str(sample_manifest)
            )

        mock_prefetch.assert_awaited_once_with(["serde", "rand"], [])
        assert path == sample_manifest
        assert [added.dependency.name for added in result.added] == ["serde", "rand"]
        assert Manifest.load(sample_manifest).to_dict()["dependencies"] == {
            "serde": "^1.0.210",
            "rand": "^0.8.5",
        }

    def test_no_lookup_for_explicit_sources(self, sample_manifest):
        with patch("crate_add.main.prefetch_lookups") as mock_prefetch:
            run_add(AddRequest(crates=["local"], path="../local"), str(sample_manifest))

        mock_prefetch.assert_not_called()
        assert Manifest.load(sample_manifest).to_dict()["dependencies"] == {
            "local": {"path": "../local"}
        }

    def test_failed_batch_leaves_file_unchanged(self, sample_manifest):
        registry = make_registry({"a": "1.0.0", "missing": None})

        with patch(
            "crate_add.main.prefetch_lookups", new=AsyncMock(return_value=registry)
        ):
            with pytest.raises(PackageLookupError):
                run_add(AddRequest(crates=["a", "missing"]), str(sample_manifest))

        assert sample_manifest.read_text() == SAMPLE_MANIFEST

    def test_invalid_request_skips_lookups(self, sample_manifest):
        with patch("crate_add.main.prefetch_lookups") as mock_prefetch:
            with pytest.raises(ConflictingDependencyKind):
                run_add(AddRequest(crates=["a"], dev=True, build=True), str(sample_manifest))

        mock_prefetch.assert_not_called()
        assert sample_manifest.read_text() == SAMPLE_MANIFEST

    def test_preserves_existing_content(self, temp_dir):
        manifest_file = temp_dir / "Cargo.toml"
        manifest_file.write_text(
            '[package]\nname = "app"\nversion = "0.1.0"\n\n'
            '[dependencies]\nlog = "0.4"\n'
            'serde = { version = "1.0", optional = true }\n'
        )
        registry = make_registry({"serde": "1.0.210"})

        with patch(
            "crate_add.main.prefetch_lookups", new=AsyncMock(return_value=registry)
        ):
            run_add(AddRequest(crates=["serde"]), str(manifest_file))

        data = Manifest.load(manifest_file).to_dict()
        assert data["package"] == {"name": "app", "version": "0.1.0"}
        assert data["dependencies"] == {
            "log": "0.4",
            "serde": {"version": "1.0.210", "optional": True},
        }

    def test_keeps_comments_on_disk(self, temp_dir):
        manifest_file = temp_dir / "Cargo.toml"
        original = (
            '[package]\nname = "app" # binary name\nversion = "0.1.0"\n\n'
            "[dependencies]\n# logging\nlog = \"0.4\"\n"
        )
        manifest_file.write_text(original)

        run_add(AddRequest(crates=["serde@1.0"]), str(manifest_file))

        assert manifest_file.read_text() == original + 'serde = "1.0"\n'

    def test_finds_manifest_in_parent(self, sample_manifest, monkeypatch):
        nested = sample_manifest.parent / "src" / "bin"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)

        assert find_manifest() == sample_manifest.resolve()

        path, _ = run_add(AddRequest(crates=["serde@1.0"]), None)
        assert path == sample_manifest.resolve()
        assert Manifest.load(sample_manifest).to_dict()["dependencies"] == {"serde": "1.0"}

    def test_missing_manifest(self, temp_dir):
        with pytest.raises(ManifestNotFoundError):
            run_add(AddRequest(crates=["serde@1.0"]), str(temp_dir / "Cargo.toml"))

    def test_invalid_manifest(self, temp_dir):
        manifest_file = temp_dir / "Cargo.toml"
        manifest_file.write_text("[package\n")

        with pytest.raises(DocumentParseError):
            run_add(AddRequest(crates=["serde@1.0"]), str(manifest_file))


class TestConfigIntegration:
    """Test configuration loading from files and the environment."""

    def test_project_config_file(self, temp_dir, monkeypatch):
        from crate_add.cli_config import load_config

        (temp_dir / ".crate-add.json").write_text(
            json.dumps({"add": {"default_upgrade": "patch"}, "network": {"rate_limit": 2.5}})
        )
        monkeypatch.chdir(temp_dir)

        config = load_config()
        assert config.add.default_upgrade == "patch"
        assert config.network.rate_limit == 2.5

    def test_environment_overrides_file(self, temp_dir, monkeypatch):
        from crate_add.cli_config import load_config

        (temp_dir / ".crate-add.json").write_text(
            json.dumps({"add": {"default_upgrade": "patch"}})
        )
        monkeypatch.chdir(temp_dir)
        monkeypatch.setenv("CRATE_ADD_UPGRADE", "all")

        assert load_config().add.default_upgrade == "all"

    def test_invalid_values_fall_back_to_defaults(self, temp_dir, monkeypatch):
        from crate_add.cli_config import load_config

        (temp_dir / ".crate-add.json").write_text(
            json.dumps({"add": {"default_upgrade": "sideways"}, "network": {"rate_limit": 2.0}})
        )
        monkeypatch.chdir(temp_dir)

        config = load_config()
        assert config.add.default_upgrade is None
        assert config.network.rate_limit == 2.0

    def test_wrong_value_types_fall_back_to_defaults(self, temp_dir, monkeypatch):
        from crate_add.cli_config import load_config

        (temp_dir / ".crate-add.json").write_text(
            json.dumps(
                {
                    "add": {"default_upgrade": 3},
                    "network": {"rate_limit": "fast", "read_timeout": 12, "connect_timeout": True},
                    "logging": "verbose",
                }
            )
        )
        monkeypatch.chdir(temp_dir)

        config = load_config()
        assert config.add.default_upgrade is None
        assert config.network.rate_limit == 5.0
        assert config.network.connect_timeout == 10.0
        assert config.network.read_timeout == 12.0
        assert config.logging.log_level == "WARNING"

    def test_non_mapping_config_file_is_ignored(self, temp_dir, monkeypatch):
        from crate_add.cli_config import load_config

        (temp_dir / ".crate-add.json").write_text(json.dumps(["patch"]))
        monkeypatch.chdir(temp_dir)

        assert load_config().add.default_upgrade is None
