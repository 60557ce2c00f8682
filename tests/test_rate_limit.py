"""Redis fixed-window rate limiting (Redis mocked)."""
from unittest.mock import MagicMock

import core.rate_limit as rate_limit
from core.rate_limit import RateLimitMiddleware


def _middleware():
    return RateLimitMiddleware(app=MagicMock(), default_limit=5, window=60, endpoint_limits={"/v1/attempt": 2})


def _redis_returning(count, ttl=42):
    pipe = MagicMock()
    pipe.execute.return_value = [count, True, ttl]
    client = MagicMock()
    client.pipeline.return_value = pipe
    return client, pipe


def test_endpoint_limit_prefix_match():
    mw = _middleware()
    assert mw._get_endpoint_limit("/v1/attempt/start") == 2
    assert mw._get_endpoint_limit("/v1/coach/invites") == 5


def test_under_limit_is_allowed(monkeypatch):
    client, pipe = _redis_returning(1)
    monkeypatch.setattr(rate_limit, "get_redis_client", lambda: client)

    allowed, remaining, _ = _middleware()._check_rate_limit("ip:1.2.3.4", "/v1/attempt/start", 2)
    assert allowed is True
    assert remaining == 1
    pipe.expire.assert_called_once_with("rate_limit:ip:1.2.3.4:/v1/attempt/start", 60, nx=True)


def test_over_limit_is_rejected(monkeypatch):
    client, _ = _redis_returning(3)
    monkeypatch.setattr(rate_limit, "get_redis_client", lambda: client)

    allowed, remaining, _ = _middleware()._check_rate_limit("ip:1.2.3.4", "/v1/attempt/start", 2)
    assert allowed is False
    assert remaining == 0


def test_fails_open_without_redis(monkeypatch):
    monkeypatch.setattr(rate_limit, "get_redis_client", lambda: None)
    allowed, remaining, _ = _middleware()._check_rate_limit("ip:1.2.3.4", "/v1/attempt/start", 2)
    assert allowed is True
    assert remaining == 2


def test_fails_open_on_redis_error(monkeypatch):
    client = MagicMock()
    client.pipeline.side_effect = RuntimeError("boom")
    monkeypatch.setattr(rate_limit, "get_redis_client", lambda: client)
    allowed, _, _ = _middleware()._check_rate_limit("ip:1.2.3.4", "/v1/attempt/start", 2)
    assert allowed is True
