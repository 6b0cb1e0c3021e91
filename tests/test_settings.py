"""
Tests for environment-driven settings.
"""

import pytest

from config import Settings


def test_concurrency_bounds_lookups_and_shopping(monkeypatch):
    monkeypatch.setenv("CONCURRENCY", "5")

    settings = Settings.from_env()

    assert settings.search.concurrency == 5
    assert settings.enrichment.api_concurrency == 5
    assert settings.enrichment.html_concurrency == 2


def test_concurrency_defaults(monkeypatch):
    monkeypatch.delenv("CONCURRENCY", raising=False)

    settings = Settings.from_env()

    assert settings.search.concurrency == 3
    assert settings.enrichment.api_concurrency == 3


def test_non_positive_concurrency_rejected(monkeypatch):
    monkeypatch.setenv("CONCURRENCY", "0")

    with pytest.raises(ValueError):
        Settings.from_env()
