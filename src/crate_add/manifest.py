"""
In-memory model of a Cargo.toml manifest.

Wraps a round-trip TOML document and exposes get-or-insert of nested tables
by path plus get/set of single entries. Comments, whitespace and the layout
of everything not touched by an edit are written back unchanged. Path
segments are opaque keys: a segment containing dots is never split.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import toml
import tomlkit
from tomlkit.exceptions import TOMLKitError
from tomlkit.items import InlineTable, Table

from .error_handling import (
    DocumentParseError,
    ErrorCategory,
    ManifestNotFoundError,
    get_error_handler,
    log_parsing_error,
)

MANIFEST_NAME = "Cargo.toml"
MAX_MANIFEST_SIZE_BYTES = 10 * 1024 * 1024

TomlValue = Union[str, bool, int, float, list, Dict[str, Any]]


def inline_table() -> InlineTable:
    """Create an empty table that is written back as `{ ... }`."""
    return tomlkit.inline_table()


def render_value(value: TomlValue) -> str:
    """TOML text of a single value, e.g. `"1.0"` or `{ path = "../a" }`."""
    return tomlkit.item(value).as_string()


def _plain(value: Any) -> Any:
    if hasattr(value, "unwrap"):
        return value.unwrap()
    return value


class Manifest:
    """A parsed manifest, owned by a single add invocation."""

    def __init__(self, data: Optional[tomlkit.TOMLDocument] = None):
        self.data = data if data is not None else tomlkit.document()

    @classmethod
    def loads(cls, text: str, source: Optional[str] = None) -> "Manifest":
        """
        Parse manifest text.

        Args:
            text: TOML document
            source: File the text came from, used in error reports

        Raises:
            DocumentParseError: If the text is not valid TOML
        """
        try:
            data = tomlkit.parse(text)
        except TOMLKitError as e:
            log_parsing_error(
                f"Invalid TOML format in manifest: {e}",
                "manifest",
                "Manifest.loads",
                file_path=source,
                exception=e,
            )
            raise DocumentParseError(f"Invalid TOML in manifest: {e}") from e
        return cls(data)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Manifest":
        return cls.loads(read_manifest(path), source=str(path))

    def dumps(self) -> str:
        return tomlkit.dumps(self.data)

    def save(self, path: Union[str, Path]) -> None:
        write_manifest(path, self.dumps())

    def get_table(self, path: Sequence[str]) -> Optional[Dict[str, Any]]:
        """Return the table at `path`, or None if any segment is missing."""
        table: Any = self.data
        for segment in path:
            if not isinstance(table, dict):
                return None
            table = table.get(segment)
        return table if isinstance(table, dict) else None

    def get_or_insert_table(self, path: Sequence[str]) -> Dict[str, Any]:
        """
        Return the table at `path`, creating missing tables on the way.

        Intermediate tables are created without a header of their own, so
        `("target", "cfg(unix)", "dependencies")` only adds
        `[target."cfg(unix)".dependencies]`. Calling this twice with the same
        path does not create anything the second time.

        Raises:
            DocumentParseError: If a segment already holds a non-table value
        """
        table = self.data
        for depth, segment in enumerate(path):
            if segment not in table:
                table[segment] = tomlkit.table(is_super_table=depth < len(path) - 1)
            child = table[segment]
            if not isinstance(child, dict):
                dotted = ".".join(path[: depth + 1])
                raise DocumentParseError(
                    f"Manifest key `{dotted}` is not a table"
                )
            table = child
        return table

    def get_entry(self, path: Sequence[str], key: str) -> Optional[TomlValue]:
        table = self.get_table(path)
        if table is None:
            return None
        return table.get(key)

    def set_entry(
        self, path: Sequence[str], key: str, value: TomlValue
    ) -> Optional[TomlValue]:
        """
        Write `key = value` into the table at `path`, returning the old value.

        An existing entry keeps its position; one written as its own
        `[path.key]` section is replaced by a `key = value` line.
        """
        table = self.get_or_insert_table(path)
        previous = table.get(key)
        if isinstance(previous, Table):
            del table[key]
        table[key] = value
        return previous

    def to_dict(self) -> Dict[str, Any]:
        """Plain nested dicts and values, without any formatting."""
        return _plain(self.data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"Manifest({self.to_dict()!r})"


def is_inline_table(value: Any) -> bool:
    return isinstance(value, InlineTable)


def find_manifest(start: Optional[Union[str, Path]] = None) -> Path:
    """
    Locate Cargo.toml in `start` or the closest parent directory.

    Raises:
        ManifestNotFoundError: If no manifest exists up to the filesystem root
    """
    directory = Path(start or Path.cwd()).resolve()
    if directory.is_file():
        return directory

    for candidate in [directory, *directory.parents]:
        manifest_path = candidate / MANIFEST_NAME
        if manifest_path.is_file():
            return manifest_path

    raise ManifestNotFoundError(
        f"Could not find `{MANIFEST_NAME}` in `{directory}` or any parent directory"
    )


def _validate_manifest_path(manifest_path: Union[str, Path]) -> Path:
    try:
        path = Path(manifest_path).resolve()
    except (OSError, ValueError) as e:
        raise ManifestNotFoundError(f"Invalid manifest path: {e}") from e

    if not path.exists():
        raise ManifestNotFoundError(f"Manifest does not exist: {path}")
    if not path.is_file():
        raise ManifestNotFoundError(f"Manifest path is not a file: {path}")
    if path.suffix.lower() != ".toml":
        raise ManifestNotFoundError(f"Manifest must be a .toml file: {path}")

    size = path.stat().st_size
    if size > MAX_MANIFEST_SIZE_BYTES:
        raise ManifestNotFoundError(
            f"Manifest too large: {size} bytes (max: {MAX_MANIFEST_SIZE_BYTES})"
        )
    return path


def read_manifest(manifest_path: Union[str, Path]) -> str:
    """
    Read manifest text from disk.

    Raises:
        ManifestNotFoundError: If the file is missing or cannot be read
    """
    path = _validate_manifest_path(manifest_path)
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except UnicodeDecodeError as e:
        raise ManifestNotFoundError(
            f"Manifest contains invalid UTF-8 characters: {path}"
        ) from e
    except OSError as e:
        get_error_handler().error(
            ErrorCategory.FILESYSTEM,
            f"Error reading manifest: {e}",
            "manifest",
            "read_manifest",
            exception=e,
            details={"file_path": path.name},
        )
        raise ManifestNotFoundError(f"Error reading manifest: {e}") from e


def write_manifest(manifest_path: Union[str, Path], text: str) -> None:
    path = Path(manifest_path)
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
    except OSError as e:
        get_error_handler().error(
            ErrorCategory.FILESYSTEM,
            f"Error writing manifest: {e}",
            "manifest",
            "write_manifest",
            exception=e,
            details={"file_path": path.name},
        )
        raise ManifestNotFoundError(f"Error writing manifest: {e}") from e


def package_name_from_text(text: str, source: Optional[str] = None) -> Optional[str]:
    """
    Read `package.name` from the manifest of another crate.

    The manifest is only read, never written back, so a plain parse is
    enough.

    Raises:
        DocumentParseError: If the text is not valid TOML
    """
    try:
        data = toml.loads(text)
    except toml.TomlDecodeError as e:
        log_parsing_error(
            f"Invalid TOML format in crate manifest: {e}",
            "manifest",
            "package_name_from_text",
            file_path=source,
            exception=e,
        )
        raise DocumentParseError(f"Invalid TOML in `{source or MANIFEST_NAME}`: {e}") from e

    package = data.get("package")
    if isinstance(package, dict) and isinstance(package.get("name"), str):
        return package["name"]
    return None


def read_package_name(crate_dir: Union[str, Path]) -> Optional[str]:
    """Return `package.name` of the crate in `crate_dir`, if it has a manifest."""
    manifest_path = Path(crate_dir) / MANIFEST_NAME
    if not manifest_path.is_file():
        return None
    return package_name_from_text(
        read_manifest(manifest_path), source=str(manifest_path)
    )
