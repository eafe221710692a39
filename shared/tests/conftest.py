"""Fixtures for settings tests."""

import os

import pytest


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Run each test without ambient settings files or variables."""
    for key in list(os.environ):
        if key.startswith("PRINTSTREAMER_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PRINTSTREAMER_CONFIG_FILE", str(tmp_path / "appsettings.json"))
    return tmp_path
