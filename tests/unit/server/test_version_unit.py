# File: tests/unit/server/test_version_unit.py

import pytest

from rustowl_client.server.version import InstalledVersion, needs_update, parse_version


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1.0.0", InstalledVersion(1, 0, 0)),
        ("v1.2.3\n", InstalledVersion(1, 2, 3)),
        ("\n  0.3.4-rc.1+build.5  \nextra line", InstalledVersion(0, 3, 4, ("rc", "1"))),
        ("", None),
        (None, None),
        ("rustowl", None),
        ("1.0", None),
        ("01.0.0", None),
        ("1.0.0-", None),
    ],
)
def test_parse_version(text, expected):
    assert parse_version(text) == expected


def test_installed_version_str():
    assert str(InstalledVersion(1, 0, 0, ("rc", "1"))) == "1.0.0-rc.1"
    assert str(InstalledVersion(2, 1, 0)) == "2.1.0"


@pytest.mark.parametrize(
    "installed, required, expected",
    [
        ("1.0.0", "1.0.0", False),
        ("v1.0.0", "1.0.0", False),
        ("1.0.0+abc", "1.0.0", False),
        ("1.0.0-rc.1", "1.0.0-rc.1", False),
        ("2.0.0", "1.0.0", True),
        ("1.1.0", "1.0.0", True),
        ("1.0.1", "1.0.0", True),
        ("1.0.0-rc.1", "1.0.0", True),
        ("1.0.0", "1.0.0-rc.2", True),
        ("0.9.9", "1.0.0", True),
        ("", "1.0.0", True),
        (None, "1.0.0", True),
        ("garbage", "1.0.0", True),
        ("1.0.0", "not-a-version", True),
    ],
)
def test_needs_update_is_exact_match(installed, required, expected):
    assert needs_update(installed, required) is expected
