"""
Version requirement formatting and validation.

A resolved registry version is turned into the requirement string stored in
the manifest according to an upgrade strategy. Explicit requirements given by
the user are validated here but otherwise stored verbatim.
"""

import re
from typing import Dict, Optional

from .error_handling import InvalidUpgradeStrategy, InvalidVersionRequirement

UPGRADE_STRATEGIES: Dict[str, str] = {
    "none": "=",
    "patch": "~",
    "minor": "^",
    "all": ">=",
}

_PART = r"(?:0|[1-9]\d*|\*|x|X)"
_IDENT = r"[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*"
_PREDICATE = re.compile(
    r"^\s*(?P<op>>=|<=|=|~|\^|>|<)?\s*"
    rf"(?P<version>(?:0|[1-9]\d*)(?:\.{_PART}){{0,2}}"
    rf"(?:-{_IDENT})?(?:\+{_IDENT})?)\s*$"
)
_WILDCARD = re.compile(r"^\s*\*\s*$")


def format_requirement(version: str, strategy: Optional[str] = None) -> str:
    """
    Build the requirement string for a resolved version.

    Args:
        version: Concrete version, e.g. "1.2.3"
        strategy: One of none, patch, minor, all; None keeps the bare version

    Returns:
        str: Requirement string, e.g. "^1.2.3"

    Raises:
        InvalidUpgradeStrategy: If the strategy token is not recognised
    """
    if strategy is None:
        return version
    return check_upgrade_strategy(strategy) + version


def check_upgrade_strategy(strategy: str) -> str:
    """Return the operator prefix for a strategy token."""
    try:
        return UPGRADE_STRATEGIES[strategy]
    except KeyError:
        raise InvalidUpgradeStrategy(
            f"Invalid upgrade strategy `{strategy}`, expected one of: "
            + ", ".join(UPGRADE_STRATEGIES)
        ) from None


def is_valid_requirement(requirement: str) -> bool:
    if not requirement or not requirement.strip():
        return False

    predicates = requirement.split(",")
    if len(predicates) > 1 and any(_WILDCARD.match(p) for p in predicates):
        return False

    for predicate in predicates:
        if _WILDCARD.match(predicate):
            continue
        match = _PREDICATE.match(predicate)
        if not match:
            return False
        version = match.group("version")
        # Wildcards may only be followed by wildcards
        parts = re.split(r"[-+]", version, maxsplit=1)[0].split(".")
        wild = [p in ("*", "x", "X") for p in parts]
        if any(wild) and not all(wild[wild.index(True):]):
            return False
        if any(wild) and ("-" in version or "+" in version):
            return False
    return True


def validate_requirement(requirement: str) -> str:
    """
    Check that an explicit requirement string is well formed.

    Accepts comma separated predicates such as ">=0.1.1", "~1.2", "1.*"
    or "=1.0.0-beta.1".

    Raises:
        InvalidVersionRequirement: If the string is not a valid requirement
    """
    if not is_valid_requirement(requirement):
        raise InvalidVersionRequirement(
            f"Invalid version requirement `{requirement}`"
        )
    return requirement
