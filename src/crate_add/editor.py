"""
Dependency upsert operation.

Validates an add request, turns each requested crate into a `Dependency` and
merges it into the selected table of a `Manifest`.

Batch policy: crates are applied in argument order and each crate is applied
atomically, but the batch is not. When crate k fails (for example its
registry lookup raises `PackageLookupError`) the crates before it have already
been written to the in-memory manifest. Callers should only persist the
manifest when `add_dependencies` returns normally.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlparse

from .dependency import (
    Dependency,
    DependencyKind,
    DependencySource,
    GitSource,
    PathSource,
    RegistrySource,
    dependency_table_path,
    format_table_path,
)
from .error_handling import (
    ConflictingDependencyKind,
    ConflictingSource,
    CrateAddError,
    EmptyTarget,
    InvalidCrateName,
    OptionalNotAllowedForDevBuild,
    PackageLookupError,
    log_validation_error,
)
from .manifest import Manifest, read_package_name
from .structured_logging import log_dependency_added
from .version_req import check_upgrade_strategy, format_requirement, validate_requirement

ResolveLatestVersion = Callable[[str], str]
NormalizeName = Callable[[str], Optional[str]]
GitPackageName = Callable[[str], str]

GIT_URL_SCHEMES = ("http://", "https://", "git://", "ssh://")


@dataclass
class AddRequest:
    """Everything the caller asked for in one add invocation."""

    crates: List[str]
    dev: bool = False
    build: bool = False
    vers: Optional[str] = None
    git: Optional[str] = None
    path: Optional[str] = None
    target: Optional[str] = None
    optional: bool = False
    upgrade: Optional[str] = None

    @property
    def kind(self) -> DependencyKind:
        return DependencyKind.from_flags(dev=self.dev, build=self.build)


@dataclass(frozen=True)
class AddedDependency:
    dependency: Dependency
    table: Tuple[str, ...]
    replaced: bool


@dataclass
class AddResult:
    """Dependencies written to the manifest and any advisory notices."""

    added: List[AddedDependency] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CrateSpec:
    """A crate argument split into its name and inline requirement."""

    token: str
    name: Optional[str]
    requirement: Optional[str] = None


def _reject(error: CrateAddError, function: str, **details) -> None:
    log_validation_error(error, "editor", function, details=details)
    raise error


def is_git_url(token: str) -> bool:
    return token.startswith(GIT_URL_SCHEMES)


def is_local_path(token: str) -> bool:
    return token.startswith((".", "~")) or any(sep in token for sep in ("/", "\\"))


def crate_name_from_url(repo_url: str) -> str:
    """Guess a crate name from the last path segment of a repository URL."""
    name = Path(urlparse(repo_url).path).name
    if name.endswith(".git"):
        name = name[: -len(".git")]
    if not name:
        raise PackageLookupError(
            repo_url, f"Could not determine crate name from `{repo_url}`"
        )
    return name


def parse_crate_spec(token: str) -> CrateSpec:
    """
    Split `name@requirement` into its parts.

    Git URLs and local paths carry no name of their own; their name is
    looked up later.
    """
    if is_git_url(token) or is_local_path(token):
        return CrateSpec(token=token, name=None)
    name, sep, requirement = token.partition("@")
    if sep:
        return CrateSpec(token=token, name=name, requirement=requirement)
    return CrateSpec(token=token, name=token)


def build_source(
    vers: Optional[str] = None,
    git: Optional[str] = None,
    path: Optional[str] = None,
) -> Optional[DependencySource]:
    """
    Build the single source described by the request fields.

    Returns None when no source was given, meaning the latest registry
    version should be looked up.

    Raises:
        ConflictingSource: If more than one of vers, git, path is set
    """
    given = [name for name, value in (("vers", vers), ("git", git), ("path", path))
             if value is not None]
    if len(given) > 1:
        _reject(
            ConflictingSource(
                "Only one of " + ", ".join(f"`--{name}`" for name in given)
                + " can be used at a time"
            ),
            "build_source",
        )
    if vers is not None:
        return RegistrySource(vers)
    if git is not None:
        return GitSource(git)
    if path is not None:
        return PathSource(path)
    return None


def check_placement(
    kind: DependencyKind, target: Optional[str], optional: bool
) -> None:
    if optional and kind is not DependencyKind.NORMAL:
        _reject(
            OptionalNotAllowedForDevBuild(
                f"Optional dependencies cannot be added to `{kind.value}`"
            ),
            "check_placement",
        )
    if target == "":
        _reject(EmptyTarget("Target specification may not be empty"), "check_placement")


def validate_request(request: AddRequest) -> Optional[DependencySource]:
    """
    Run every request level check before anything is looked up or written.

    Returns the source shared by all crates in the request, if any.
    """
    if request.dev and request.build:
        _reject(
            ConflictingDependencyKind("`--dev` and `--build` cannot be used together"),
            "validate_request",
        )
    source = build_source(request.vers, request.git, request.path)
    check_placement(request.kind, request.target, request.optional)
    if isinstance(source, RegistrySource):
        validate_requirement(source.requirement)
    if request.upgrade is not None:
        check_upgrade_strategy(request.upgrade)
    return source


def pending_lookups(request: AddRequest) -> Tuple[List[str], List[str]]:
    """
    Crate names and git URLs of `request` that need a network lookup.

    Call after `validate_request`; the result lets a caller resolve the whole
    batch up front.
    """
    crate_names: List[str] = []
    git_urls: List[str] = []
    has_shared_source = any(
        value is not None for value in (request.vers, request.git, request.path)
    )
    for spec in map(parse_crate_spec, request.crates):
        if spec.name is None:
            if is_git_url(spec.token):
                git_urls.append(spec.token)
        elif spec.requirement is None and not has_shared_source:
            crate_names.append(spec.name)
    return crate_names, git_urls


def upsert_dependency(
    manifest: Manifest,
    dependency: Dependency,
    kind: DependencyKind = DependencyKind.NORMAL,
    target: Optional[str] = None,
) -> Tuple[Tuple[str, ...], bool]:
    """
    Insert or overwrite `dependency` in the table selected by kind and target.

    An existing entry is replaced wholesale: none of its source keys survive.
    Only `optional = true` is carried over when the new dependency does not
    set it. Other tables and entries are left untouched.

    Returns:
        The table path written to and whether an entry was replaced
    """
    check_placement(kind, target, dependency.optional)

    table_path = dependency_table_path(kind, target)
    existing = manifest.get_entry(table_path, dependency.name)

    if (
        not dependency.optional
        and isinstance(existing, dict)
        and existing.unwrap().get("optional") is True
    ):
        dependency = Dependency(dependency.name, dependency.source, optional=True)

    manifest.set_entry(table_path, dependency.name, dependency.to_toml())
    log_dependency_added(
        dependency.name,
        format_table_path(table_path),
        dependency.source.kind,
        replaced=existing is not None,
    )
    return table_path, existing is not None


def _infer_source(
    spec: CrateSpec, git_package_name: Optional[GitPackageName]
) -> Tuple[str, DependencySource]:
    if is_git_url(spec.token):
        lookup = git_package_name or crate_name_from_url
        return lookup(spec.token), GitSource(spec.token)

    crate_dir = Path(spec.token).expanduser()
    name = read_package_name(crate_dir) if crate_dir.is_dir() else None
    if name is None:
        raise PackageLookupError(
            spec.token, f"No crate manifest found at `{spec.token}`"
        )
    return name, PathSource(str(crate_dir))


def add_dependencies(
    manifest: Manifest,
    request: AddRequest,
    resolve_latest_version: Optional[ResolveLatestVersion] = None,
    normalize_name: Optional[NormalizeName] = None,
    git_package_name: Optional[GitPackageName] = None,
) -> AddResult:
    """
    Add every crate of `request` to `manifest`.

    Args:
        manifest: Document to mutate in place
        request: Parsed add request
        resolve_latest_version: Returns the newest version of a crate;
            raises PackageLookupError when the crate cannot be resolved
        normalize_name: Returns the canonical registry name of a crate
        git_package_name: Returns the crate name found in a git repository

    Raises:
        CrateAddError: On the first failing crate; earlier crates stay applied
    """
    shared_source = validate_request(request)
    kind = request.kind

    specs = [parse_crate_spec(token) for token in request.crates]
    for spec in specs:
        if spec.name is not None and not spec.name.strip():
            _reject(
                InvalidCrateName(f"Missing crate name in `{spec.token}`"),
                "add_dependencies",
                crate=spec.token,
            )
        names_source = spec.name is None or spec.requirement is not None
        if names_source and shared_source is not None:
            _reject(
                ConflictingSource(
                    f"Cannot combine `{spec.token}` with an explicit "
                    "`--vers`, `--git` or `--path`"
                ),
                "add_dependencies",
                crate=spec.token,
            )
        if spec.requirement is not None:
            validate_requirement(spec.requirement)

    result = AddResult()
    for spec in specs:
        if spec.name is None:
            name, source = _infer_source(spec, git_package_name)
        elif spec.requirement is not None:
            name, source = spec.name, RegistrySource(spec.requirement)
        elif shared_source is not None:
            name, source = spec.name, shared_source
        else:
            if resolve_latest_version is None:
                raise PackageLookupError(
                    spec.name, f"No registry available to resolve `{spec.name}`"
                )
            name = spec.name
            version = resolve_latest_version(name)
            source = RegistrySource(format_requirement(version, request.upgrade))

        if isinstance(source, RegistrySource) and normalize_name is not None:
            normalized = normalize_name(name)
            if normalized and normalized != name:
                result.warnings.append(f"Added `{normalized}` instead of `{name}`")
                name = normalized

        dependency = Dependency(name, source, optional=request.optional)
        table_path, replaced = upsert_dependency(
            manifest, dependency, kind, request.target
        )
        result.added.append(AddedDependency(dependency, table_path, replaced))

    return result
