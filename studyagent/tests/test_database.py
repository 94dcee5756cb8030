"""Tests for database URL selection."""

from studyagent.core import database
from studyagent.core.config import settings


def test_test_database_url_takes_precedence(monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", "postgresql://app@db/studyagent")
    monkeypatch.setattr(settings, "TEST_DATABASE_URL", "sqlite://")
    assert database.get_database_url() == "sqlite://"


def test_falls_back_to_database_url(monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", "postgresql://app@db/studyagent")
    monkeypatch.setattr(settings, "TEST_DATABASE_URL", None)
    assert database.get_database_url() == "postgresql://app@db/studyagent"
