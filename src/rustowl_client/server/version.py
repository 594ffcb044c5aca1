# File: rustowl_client/server/version.py

"""Decides whether an installed server binary matches the required version.

The check is deliberately an exact comparison of major, minor, patch and
pre-release tag rather than a semver range: any drift between the client and
the server triggers a reinstall. Parsing is delegated to `semver`.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import semver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstalledVersion:
    major: int
    minor: int
    patch: int
    pre: Tuple[str, ...] = ()

    def __str__(self) -> str:
        core = f"{self.major}.{self.minor}.{self.patch}"
        return f"{core}-{'.'.join(self.pre)}" if self.pre else core


def parse_version(text: Optional[str]) -> Optional[InstalledVersion]:
    """Parses the output of ``rustowl --version --quiet``.

    Accepts an optional leading ``v`` and ignores build metadata. Only the
    first non-empty line is considered.

    Args:
        text: Raw version output. May be None or empty.

    Returns:
        The parsed version, or None if the text is empty or not a version.
    """
    if not text:
        return None
    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    if not lines:
        return None
    candidate = lines[0][1:] if lines[0].startswith("v") else lines[0]
    try:
        version = semver.Version.parse(candidate)
    except ValueError:
        logger.debug(f"Unparseable version string: {lines[0]!r}")
        return None
    pre = tuple(version.prerelease.split(".")) if version.prerelease else ()
    return InstalledVersion(major=version.major, minor=version.minor, patch=version.patch, pre=pre)


def needs_update(installed: Optional[str], required: str) -> bool:
    """Returns True if the installed server must be (re)installed.

    Args:
        installed: Raw version output of the installed binary. Empty or
            unparseable output counts as outdated.
        required: The version this client expects.

    Returns:
        False only if major, minor, patch and pre-release tag all match.
    """
    current = parse_version(installed)
    if current is None:
        return True
    target = parse_version(required)
    if target is None:
        logger.warning(f"Required server version '{required}' is not a valid version.")
        return True
    logger.debug(f"Installed server version {current}, required {target}.")
    return current != target
