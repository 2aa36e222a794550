"""
Shared fixtures: every test runs against default configuration,
isolated from the user's config file and CHARLIMIT_* variables.
"""

import os

import pytest

from charlimit.config import reset_config


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for key in list(os.environ):
        if key.startswith("CHARLIMIT_"):
            monkeypatch.delenv(key)
    reset_config()
    yield
    reset_config()
