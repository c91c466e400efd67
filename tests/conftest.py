import logging

import pytest

import gagiteck.persistence as persistence


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep config files, env overrides and the repository singleton out of tests."""
    for name in (
        "GAGITECK_CONFIG",
        "GAGITECK_DATABASE_URL",
        "DATABASE_URL",
        "GAGITECK_LOG_LEVEL",
        "GAGITECK_TRIGGER_BACKEND",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GAGITECK_CONFIG", str(tmp_path / "missing-gagiteck.yaml"))
    monkeypatch.setattr(persistence, "_repository_instance", None)

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    # CLI commands reconfigure logging onto the runner's captured stderr
    root.handlers[:] = handlers
    root.setLevel(level)
