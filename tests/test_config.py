"""Tests for production configuration guards and the required-Redis cache mode."""

from unittest.mock import MagicMock, patch

import pytest
import redis

from flowreport.config import ProductionConfig
from flowreport.services import cache_service


@pytest.fixture()
def prod_env(monkeypatch):
    """Production settings that pass every guard except the one under test."""
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", "postgresql://db/flow")
    monkeypatch.setattr(ProductionConfig, "REDIS_URL", "redis://cache:6379/0")
    monkeypatch.setenv("PIPEDRIVE_API_TOKEN", "tok")
    return monkeypatch


class TestProductionConfig:
    def test_accepts_complete_settings(self, prod_env):
        cfg = ProductionConfig()
        assert cfg.REDIS_REQUIRED is True
        assert cfg.QR_COUNTER_ENV

    @pytest.mark.parametrize("url", ["", "memory://"])
    def test_requires_a_redis_server(self, prod_env, url):
        prod_env.setattr(ProductionConfig, "REDIS_URL", url)
        with pytest.raises(RuntimeError, match="REDIS_URL"):
            ProductionConfig()

    def test_requires_database_url(self, prod_env):
        prod_env.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            ProductionConfig()

    def test_requires_pipedrive_token(self, prod_env):
        prod_env.delenv("PIPEDRIVE_API_TOKEN")
        with pytest.raises(RuntimeError, match="PIPEDRIVE_API_TOKEN"):
            ProductionConfig()


class TestRequiredRedis:
    @pytest.fixture()
    def required(self, monkeypatch):
        monkeypatch.setattr(cache_service, "_backend", None)
        monkeypatch.setattr(cache_service, "_redis_required", True)
        return monkeypatch

    def test_memory_url_is_rejected(self, required):
        required.setattr(cache_service, "_redis_url", "memory://")
        with pytest.raises(RuntimeError, match="REDIS_REQUIRED"):
            cache_service.get_backend()

    def test_unreachable_redis_is_not_replaced_by_memory(self, required):
        required.setattr(cache_service, "_redis_url", "redis://cache:6379/0")
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")
        with patch("redis.from_url", return_value=client):
            with pytest.raises(redis.ConnectionError):
                cache_service.get_backend()
        assert cache_service._backend is None

    def test_optional_redis_falls_back_to_memory(self, monkeypatch):
        monkeypatch.setattr(cache_service, "_backend", None)
        monkeypatch.setattr(cache_service, "_redis_required", False)
        monkeypatch.setattr(cache_service, "_redis_url", "redis://cache:6379/0")
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")
        with patch("redis.from_url", return_value=client):
            backend = cache_service.get_backend()
        assert isinstance(backend, cache_service._MemoryBackend)
