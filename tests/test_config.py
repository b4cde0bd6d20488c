"""
Tests for configuration loading (config.py).
"""

from config import Config


class TestConfig:

    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_URL", "DATABASE_NAME", "MONGO_TRANSACTIONS", "PORT"):
            monkeypatch.delenv(name, raising=False)

        config = Config()

        assert config.mongo.url == "mongodb://localhost:27017"
        assert config.mongo.database == "vidshare"
        assert config.mongo.use_transactions is False
        assert config.server.port == 8000

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "mongodb://db:27017/?replicaSet=rs0")
        monkeypatch.setenv("MONGO_TRANSACTIONS", "true")
        monkeypatch.setenv("CORS_ORIGINS", "https://a.io,https://b.io")

        config = Config()

        assert config.mongo.use_transactions is True
        assert config.server.cors_origins == ["https://a.io", "https://b.io"]

    def test_validate_warns_about_transactions_without_replica_set(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "mongodb://db:27017")
        monkeypatch.setenv("MONGO_TRANSACTIONS", "true")

        warnings = Config().validate()

        assert any("replicaSet" in w for w in warnings)

    def test_validate_quiet_in_debug_with_replica_set(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "mongodb://localhost:27017/?replicaSet=rs0")
        monkeypatch.setenv("MONGO_TRANSACTIONS", "true")
        monkeypatch.setenv("DEBUG", "true")

        assert Config().validate() == []
