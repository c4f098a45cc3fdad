"""Tests for the diagnostics stream."""

from __future__ import annotations

from datetime import datetime, timedelta

from blockhead import models


class TestDiagnostics:
    def test_recent_newest_first(self):
        models.record("a.test", "info", "one")
        models.record("a.test", "warning", "two")
        assert [e.message for e in models.recent("a.test")] == ["two", "one"]

    def test_recent_limit_and_level(self):
        for i in range(5):
            models.record("a.test", "info", f"line {i}")
        models.record("a.test", "error", "boom")
        assert len(models.recent("a.test", limit=3)) == 3
        assert [e.message for e in models.recent("a.test", level="error")] == ["boom"]

    def test_prune(self):
        models.LogEntry.create(domain="a.test", message="old", timestamp=datetime.now() - timedelta(days=30))
        models.record("a.test", "info", "new")
        assert models.prune(days=7) == 1
        assert [e.message for e in models.recent("a.test")] == ["new"]

    def test_to_dict(self):
        models.record("a.test", "error", "bad")
        data = models.recent("a.test")[0].to_dict()
        assert data["level"] == "error"
        assert data["timestamp"]
