"""
Shared fixtures for crate-add tests.
"""

import os

import pytest

from crate_add.cli_config import reset_config
from crate_add.error_handling import PackageLookupError
from crate_add.manifest import Manifest
from crate_add.registry_clients import (
    PackageInfo,
    PrefetchedRegistry,
    RegistryCheckResult,
)

SAMPLE_MANIFEST = """[package]
name = "cargo-list-test-fixture"
version = "0.0.0"
"""


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep user config files and CRATE_ADD_* variables out of the tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for key in list(os.environ):
        if key.startswith("CRATE_ADD_"):
            monkeypatch.delenv(key)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_dir(tmp_path):
    """Working directory for files created by a test."""
    work = tmp_path / "work"
    work.mkdir()
    return work


@pytest.fixture
def sample_manifest(temp_dir):
    """A Cargo.toml with a package section and no dependencies."""
    manifest_file = temp_dir / "Cargo.toml"
    manifest_file.write_text(SAMPLE_MANIFEST)
    return manifest_file


@pytest.fixture
def empty_manifest():
    return Manifest.loads(SAMPLE_MANIFEST)


@pytest.fixture
def stub_resolver():
    """Resolves every crate to `<name>--CURRENT_VERSION_TEST`."""
    calls = []

    def resolve(name):
        calls.append(name)
        return f"{name}--CURRENT_VERSION_TEST"

    resolve.calls = calls
    return resolve


@pytest.fixture
def failing_resolver():
    """Resolves every crate except `missing`, which is not on the registry."""

    def resolve(name):
        if name == "missing":
            raise PackageLookupError(name, "The crate `missing` could not be found")
        return "1.0.0"

    return resolve


def make_registry(versions, canonical_names=None):
    """Build a PrefetchedRegistry from a name -> version mapping."""
    canonical_names = canonical_names or {}
    results = {}
    for name, version in versions.items():
        if version is None:
            info = PackageInfo(name=name, exists=False)
        else:
            info = PackageInfo(
                name=canonical_names.get(name, name), exists=True, version=version
            )
        results[name] = RegistryCheckResult(
            package_name=name, registry_type="crates", package_info=info
        )
    return PrefetchedRegistry(results)


@pytest.fixture
def registry_factory():
    return make_registry
