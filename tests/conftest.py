"""Root test configuration for FormGuard.

Clears the FORMGUARD_* environment overrides for the whole suite so a
developer's shell (or a stray .formguard/config.yaml in the working directory)
cannot leak into config-dependent tests. Tests that exercise the overrides set
them again with their own monkeypatch calls.
"""

import pytest


@pytest.fixture(autouse=True)
def isolate_formguard_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Remove env overrides and run each test from an empty working directory."""
    for name in (
        "FORMGUARD_CONFIG",
        "FORMGUARD_PORT",
        "FORMGUARD_SOURCE_URL",
        "FORMGUARD_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
