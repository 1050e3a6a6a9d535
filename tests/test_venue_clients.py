"""Tests for the Binance, Bybit and OKX venue clients.

HTTP is served by httpx.MockTransport; no test touches the network.
"""

from __future__ import annotations

import asyncio
import json
import time

import httpx
import pytest

from core.errors import NetworkError, NotFound, ParseError, RateLimited, classify_http_error
from core.market_data.venues import BinanceClient, BybitClient, OkxClient, get_venue_client, with_retry
from core.market_data.venues.base import SubscriptionHandle
from core.ratelimit.tracker import RateLimitTracker


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def no_sleep(monkeypatch):
    """Record retry delays instead of sleeping."""
    delays: list[float] = []

    async def fake_sleep(delay, *args, **kwargs):
        delays.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return delays


# ========== Error classification ==========


def test_classify_http_error() -> None:
    assert isinstance(classify_http_error(429, "slow down"), RateLimited)
    assert isinstance(classify_http_error(418, "banned"), RateLimited)
    assert isinstance(classify_http_error(404, "gone"), NotFound)

    server = classify_http_error(503, "unavailable")
    assert isinstance(server, NetworkError)
    assert server.is_transient is True

    forbidden = classify_http_error(403, "forbidden")
    assert isinstance(forbidden, NetworkError)
    assert forbidden.is_transient is False


# ========== Retry ==========


@pytest.mark.asyncio
async def test_with_retry_retries_transient_errors(no_sleep) -> None:
    calls = []

    @with_retry(max_retries=2, jitter=False)
    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise NetworkError("reset", venue="binance")
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 3
    assert no_sleep == [0.5, 1.0]


@pytest.mark.asyncio
async def test_with_retry_gives_up_after_max(no_sleep) -> None:
    @with_retry(max_retries=1, jitter=False)
    async def down():
        raise NetworkError("down", venue="binance")

    with pytest.raises(NetworkError):
        await down()
    assert len(no_sleep) == 1


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_permanent_errors(no_sleep) -> None:
    calls = []

    @with_retry()
    async def missing():
        calls.append(1)
        raise NotFound("nope")

    with pytest.raises(NotFound):
        await missing()
    assert calls == [1]
    assert no_sleep == []


@pytest.mark.asyncio
async def test_with_retry_honours_retry_after(no_sleep) -> None:
    calls = []

    @with_retry(max_retries=1, jitter=False)
    async def throttled():
        calls.append(1)
        if len(calls) == 1:
            raise RateLimited("429", retry_after=3.0)
        return "ok"

    assert await throttled() == "ok"
    assert no_sleep == [3.0]


# ========== Binance ==========


@pytest.mark.asyncio
async def test_binance_fetch_ticker_records_weight() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v3/ticker/24hr"
        assert request.url.params["symbol"] == "BTCUSDT"
        return httpx.Response(
            200,
            json={
                "symbol": "BTCUSDT",
                "lastPrice": "50000.5",
                "priceChange": "500",
                "priceChangePercent": "1.01",
                "highPrice": "51000",
                "lowPrice": "49000",
                "volume": "1234.5",
                "quoteVolume": "61725000",
                "closeTime": 1700000000000,
            },
            headers={"X-MBX-USED-WEIGHT-1M": "42"},
        )

    tracker = RateLimitTracker()
    client = BinanceClient(http_client=mock_client(handler), tracker=tracker)

    ticker = await client.fetch_ticker("btc/usdt")

    assert ticker.symbol == "BTCUSDT"
    assert ticker.price == 50000.5
    assert ticker.change_percent_24h == 1.01
    assert ticker.volume_quote_24h == 61725000.0
    assert ticker.timestamp == 1700000000000
    assert ticker.venue == "binance"
    assert tracker.get("binance", "/ticker/24hr").used == 42


@pytest.mark.asyncio
async def test_binance_invalid_symbol_is_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"code": -1121, "msg": "Invalid symbol."})

    client = BinanceClient(http_client=mock_client(handler))
    with pytest.raises(NotFound):
        await client.fetch_ticker("NOPEUSDT")


@pytest.mark.asyncio
async def test_binance_rate_limit_counts_throttle(no_sleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="Too many requests", headers={"Retry-After": "2"})

    tracker = RateLimitTracker()
    client = BinanceClient(http_client=mock_client(handler), tracker=tracker)

    with pytest.raises(RateLimited) as exc_info:
        await client.fetch_ticker("BTCUSDT")

    assert exc_info.value.retry_after == 2.0
    assert tracker.throttled_count("binance") == 3


@pytest.mark.asyncio
async def test_binance_holds_requests_when_quota_nearly_spent(no_sleep) -> None:
    """A recorded quota at 90% or more is rate limited locally, without a request."""
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, json={})

    tracker = RateLimitTracker()
    tracker.update("binance", "/ticker/24hr", 100, 5, time.time() + 30)
    client = BinanceClient(http_client=mock_client(handler), tracker=tracker)

    with pytest.raises(RateLimited) as exc_info:
        await client.fetch_ticker("BTCUSDT")

    assert calls == []
    assert exc_info.value.retry_after is not None
    assert len(no_sleep) == 2
    assert tracker.throttled_count("binance") == 0


@pytest.mark.asyncio
async def test_binance_invalid_json_is_parse_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    client = BinanceClient(http_client=mock_client(handler))
    with pytest.raises(ParseError):
        await client.fetch_ticker("BTCUSDT")


@pytest.mark.asyncio
async def test_binance_transport_error_is_network_error(no_sleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = BinanceClient(http_client=mock_client(handler))
    with pytest.raises(NetworkError):
        await client.fetch_ticker("BTCUSDT")


@pytest.mark.asyncio
async def test_binance_fetch_candles() -> None:
    rows = [
        [1700000000000, "100", "110", "95", "105", "12.5", 1700003599999],
        [1700003600000, "105", "112", "101", "108", "9.0", 1700007199999],
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["interval"] == "1h"
        assert request.url.params["limit"] == "2"
        return httpx.Response(200, json=rows)

    client = BinanceClient(http_client=mock_client(handler))
    candles = await client.fetch_candles("BTCUSDT", "1h", 2)

    assert [c.close for c in candles] == [105.0, 108.0]
    assert candles[0].open_time.timestamp() == 1700000000
    assert candles[1].high == 112.0


@pytest.mark.asyncio
async def test_binance_rejects_unknown_interval() -> None:
    client = BinanceClient(http_client=mock_client(lambda r: httpx.Response(200, json=[])))
    with pytest.raises(ValueError):
        await client.fetch_candles("BTCUSDT", "2h")


@pytest.mark.asyncio
async def test_binance_fetch_all_tickers_filters_usdt_and_malformed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[
                {"symbol": "BTCUSDT", "lastPrice": "1", "priceChangePercent": "1", "volume": "1"},
                {"symbol": "ETHBTC", "lastPrice": "1", "priceChangePercent": "1", "volume": "1"},
                {"symbol": "BADUSDT", "lastPrice": "n/a", "priceChangePercent": "1", "volume": "1"},
            ],
        )

    client = BinanceClient(http_client=mock_client(handler))
    tickers = await client.fetch_all_tickers()
    assert [t.symbol for t in tickers] == ["BTCUSDT"]


@pytest.mark.asyncio
async def test_binance_fetch_derivatives() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "fapi.binance.com"
        if request.url.path == "/fapi/v1/openInterest":
            return httpx.Response(200, json={"openInterest": "8000.5", "symbol": "BTCUSDT"})
        if request.url.path == "/fapi/v1/fundingRate":
            return httpx.Response(200, json=[{"fundingRate": "0.0001"}])
        return httpx.Response(200, json=[{"longShortRatio": "1.5"}])

    client = BinanceClient(http_client=mock_client(handler))
    snapshot = await client.fetch_derivatives("BTCUSDT")

    assert snapshot.open_interest == 8000.5
    assert snapshot.funding_rate == 0.0001
    assert snapshot.long_short_ratio == 1.5
    assert snapshot.liquidation_imbalance == pytest.approx(0.5)


def test_binance_parse_push() -> None:
    client = BinanceClient()
    message = {"stream": "btcusdt@ticker", "data": {"s": "BTCUSDT", "c": "50100", "P": "2.5", "q": "1e6", "E": 5}}
    ticker = client._parse_push(message, "BTCUSDT")
    assert ticker.price == 50100.0
    assert ticker.timestamp == 5
    assert client._parse_push({"result": None, "id": 1}, "BTCUSDT") is None
    assert client._ws_url("BTCUSDT").endswith("streams=btcusdt@ticker")


# ========== Bybit ==========


@pytest.mark.asyncio
async def test_bybit_fetch_ticker_scales_percent() -> None:
    """Bybit reports 24h change as a fraction; tickers carry percent."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["category"] == "spot"
        return httpx.Response(
            200,
            json={
                "retCode": 0,
                "retMsg": "OK",
                "time": 1700000000123,
                "result": {
                    "list": [
                        {
                            "symbol": "ETHUSDT",
                            "lastPrice": "2000",
                            "price24hPcnt": "0.0123",
                            "prevPrice24h": "1975",
                            "volume24h": "10",
                            "turnover24h": "20000",
                        }
                    ]
                },
            },
        )

    client = BybitClient(http_client=mock_client(handler))
    ticker = await client.fetch_ticker("ETH")

    assert ticker.symbol == "ETHUSDT"
    assert ticker.change_percent_24h == pytest.approx(1.23)
    assert ticker.change_24h == pytest.approx(25.0)
    assert ticker.timestamp == 1700000000123


@pytest.mark.asyncio
async def test_bybit_nonzero_ret_code_is_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"retCode": 10001, "retMsg": "Not supported symbols", "result": {}})

    client = BybitClient(http_client=mock_client(handler))
    with pytest.raises(NotFound):
        await client.fetch_ticker("NOPEUSDT")


@pytest.mark.asyncio
async def test_bybit_candles_are_returned_oldest_first() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["interval"] == "60"
        return httpx.Response(
            200,
            json={
                "retCode": 0,
                "result": {
                    "list": [
                        ["1700003600000", "105", "112", "101", "108", "9.0", "972"],
                        ["1700000000000", "100", "110", "95", "105", "12.5", "1312"],
                    ]
                },
            },
        )

    client = BybitClient(http_client=mock_client(handler))
    candles = await client.fetch_candles("BTCUSDT", "1h", 2)
    assert [c.close for c in candles] == [105.0, 108.0]


def test_bybit_subscribe_message_and_push() -> None:
    client = BybitClient()
    assert client._subscribe_message("BTCUSDT") == {"op": "subscribe", "args": ["tickers.BTCUSDT"]}

    message = {
        "topic": "tickers.BTCUSDT",
        "ts": 42,
        "data": {"symbol": "BTCUSDT", "lastPrice": "100", "price24hPcnt": "-0.01", "volume24h": "5"},
    }
    ticker = client._parse_push(message, "BTCUSDT")
    assert ticker.change_percent_24h == pytest.approx(-1.0)
    assert ticker.timestamp == 42
    assert client._parse_push({"op": "subscribe", "success": True}, "BTCUSDT") is None


# ========== OKX ==========


@pytest.mark.asyncio
async def test_okx_fetch_ticker_translates_instrument() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["instId"] == "SOL-USDT"
        return httpx.Response(
            200,
            json={
                "code": "0",
                "msg": "",
                "data": [
                    {
                        "instId": "SOL-USDT",
                        "last": "110",
                        "open24h": "100",
                        "high24h": "115",
                        "low24h": "98",
                        "vol24h": "1000",
                        "volCcy24h": "105000",
                        "ts": "1700000000000",
                    }
                ],
            },
        )

    client = OkxClient(http_client=mock_client(handler))
    ticker = await client.fetch_ticker("SOLUSDT")

    assert ticker.symbol == "SOLUSDT"
    assert ticker.change_percent_24h == pytest.approx(10.0)
    assert ticker.change_24h == pytest.approx(10.0)
    assert ticker.venue == "okx"


@pytest.mark.asyncio
async def test_okx_error_code_is_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": "51001", "msg": "Instrument ID does not exist", "data": []})

    client = OkxClient(http_client=mock_client(handler))
    with pytest.raises(NotFound):
        await client.fetch_ticker("NOPEUSDT")


@pytest.mark.asyncio
async def test_okx_missing_data_is_parse_error() -> None:
    client = OkxClient(http_client=mock_client(lambda r: httpx.Response(200, json={"code": "0"})))
    with pytest.raises(ParseError):
        await client.fetch_ticker("BTCUSDT")


@pytest.mark.asyncio
async def test_okx_fetch_derivatives_uses_swap_instrument() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.params["instId"])
        if request.url.path.endswith("open-interest"):
            return httpx.Response(200, json={"code": "0", "data": [{"oi": "5000"}]})
        return httpx.Response(200, json={"code": "0", "data": [{"fundingRate": "-0.0002"}]})

    client = OkxClient(http_client=mock_client(handler))
    snapshot = await client.fetch_derivatives("BTCUSDT")

    assert seen == ["BTC-USDT-SWAP", "BTC-USDT-SWAP"]
    assert snapshot.open_interest == 5000.0
    assert snapshot.funding_rate == -0.0002
    assert snapshot.long_short_ratio == 1.0


def test_okx_subscribe_message() -> None:
    message = OkxClient()._subscribe_message("BTCUSDT")
    assert json.loads(json.dumps(message)) == {
        "op": "subscribe",
        "args": [{"channel": "tickers", "instId": "BTC-USDT"}],
    }


# ========== Factory and subscriptions ==========


def test_get_venue_client() -> None:
    tracker = RateLimitTracker()
    client = get_venue_client(" Bybit ", tracker=tracker)
    assert isinstance(client, BybitClient)
    assert client.tracker is tracker
    with pytest.raises(ValueError):
        get_venue_client("kraken")


@pytest.mark.asyncio
async def test_dispatch_drops_malformed_and_isolates_callback() -> None:
    """Malformed push messages are dropped; a failing callback does not break the stream."""
    client = BinanceClient()
    received = []

    async def on_update(ticker):
        received.append(ticker)
        raise RuntimeError("listener bug")

    handle = SubscriptionHandle(venue="binance", symbol="BTCUSDT")
    await client._dispatch(handle, "not json", on_update)
    await client._dispatch(handle, json.dumps({"data": {"s": "BTCUSDT", "c": "oops"}}), on_update)
    await client._dispatch(handle, json.dumps({"data": {"s": "BTCUSDT", "c": "1"}}), on_update)

    assert handle.messages == 1
    assert len(received) == 1


@pytest.mark.asyncio
async def test_unsubscribe_stops_stream_task() -> None:
    """unsubscribe ends the subscription task and marks the handle closed."""
    client = BinanceClient(reconnect_initial=10.0)
    client._ws_url = lambda symbol: "ws://127.0.0.1:9/unreachable"

    handle = await client.subscribe_ticker("BTCUSDT", lambda t: asyncio.sleep(0))
    await client.unsubscribe(handle)

    assert handle.status == "closed"
    assert handle.task.done()
    assert not handle.active
