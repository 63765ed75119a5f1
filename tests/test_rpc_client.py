"""
RPC aggregation client tests.
"""

import asyncio

import httpx
import pytest

from conftest import local
from tempreport.core.rpc_client import RpcClient, extract_payload, parse_readings
from tempreport.models.report import CentralRequest


def _request(*devices):
    return CentralRequest(
        devices=list(devices),
        date_start=local(2025, 1, 1),
        date_end=local(2025, 1, 1, 23, 59, 59),
    )


ITEM = {"device_label": "T-01", "time_interval": "2025-01-01T11:00:00.000Z", "value": 20.5}


@pytest.mark.parametrize(
    "body, expected",
    [
        ([ITEM], [ITEM]),
        ({"data": [ITEM]}, [ITEM]),
        ({"body": [ITEM]}, [ITEM]),
        ({"data": "oops"}, []),
        ("nothing", []),
        (None, []),
    ],
)
def test_extract_payload_envelopes(body, expected):
    assert extract_payload(body) == expected


def test_parse_readings_device_key_aliases():
    readings = parse_readings(
        [
            {"deviceName": "T-02", "time_interval": "2025-01-01T11:00:00Z", "value": 19},
            {"name": "T-03", "timestamp": "2025-01-01T11:30:00Z", "value": "18.5"},
            {"time_interval": "not a date", "value": 20},
            "garbage",
        ]
    )

    assert [r.device_key for r in readings] == ["T-02", "T-03", "unknown"]
    assert readings[1].value == 18.5
    assert readings[2].timestamp is None


@pytest.mark.asyncio
async def test_fetch_chunk_collects_each_central(centrals, http_client, settings):
    centrals.respond("c1", [ITEM])
    centrals.respond("c2", {"data": [dict(ITEM, device_label="T-02")]})
    client = RpcClient(http_client, settings)

    result = await client.fetch_chunk({"c1": _request("T-01"), "c2": _request("T-02")})

    assert result.failures == []
    assert [r.device_key for r in result.readings["c1"]] == ["T-01"]
    assert [r.device_key for r in result.readings["c2"]] == ["T-02"]


@pytest.mark.asyncio
async def test_request_body_and_url(centrals, http_client, settings):
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, json=[])

    centrals.on("c1", handler)
    client = RpcClient(http_client, settings)

    await client.fetch_chunk({"c1": _request("T-01")})

    assert seen == ["https://c1.gateway.test/api/rpc/temperature_report"]
    assert centrals.calls_for("c1") == [
        {
            "devices": ["T-01"],
            "dateStart": "2025-01-01T03:00:00.000Z",
            "dateEnd": "2025-01-02T02:59:59.000Z",
        }
    ]


@pytest.mark.asyncio
async def test_central_without_devices_is_skipped(centrals, http_client, settings):
    client = RpcClient(http_client, settings)

    result = await client.fetch_chunk({"c1": _request()})

    assert centrals.calls == []
    assert result.readings == {"c1": []}
    assert result.failures == []


@pytest.mark.asyncio
async def test_timeout_is_isolated(centrals, http_client, settings):
    """One central timing out does not stop the others."""
    centrals.timeout("c1")
    centrals.respond("c2", [dict(ITEM, device_label="T-02")])
    client = RpcClient(http_client, settings)

    result = await client.fetch_chunk({"c1": _request("T-01"), "c2": _request("T-02")})

    assert result.readings["c1"] == []
    assert len(result.readings["c2"]) == 1
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert failure.central_id == "c1"
    assert failure.status == "timeout"
    assert failure.status_text == "Timeout (120s)"
    assert failure.url == "https://c1.gateway.test/api/rpc/temperature_report"


@pytest.mark.asyncio
async def test_overall_timeout_bounds_slow_central(centrals, http_client, settings):
    async def slow(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json=[])

    centrals.on("c1", slow)
    client = RpcClient(http_client, settings.model_copy(update={"rpc_timeout_seconds": 0.05}))

    result = await client.fetch_chunk({"c1": _request("T-01")})

    assert result.failures[0].status == "timeout"


@pytest.mark.asyncio
async def test_http_error_recorded(centrals, http_client, settings):
    centrals.respond("c1", {"error": "upstream"}, status_code=502)
    client = RpcClient(http_client, settings)

    result = await client.fetch_chunk({"c1": _request("T-01")})

    assert result.readings["c1"] == []
    assert result.failures[0].status == 502
    assert result.failures[0].status_text == "Bad Gateway"


@pytest.mark.asyncio
async def test_transport_error_recorded(centrals, http_client, settings):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    centrals.on("c1", refuse)
    client = RpcClient(http_client, settings)

    result = await client.fetch_chunk({"c1": _request("T-01")})

    assert result.failures[0].status == 0
    assert "connection refused" in result.failures[0].status_text


@pytest.mark.asyncio
async def test_malformed_central_url_recorded(centrals, http_client, settings):
    """A central id that cannot form a URL fails alone."""
    centrals.respond("c2", [dict(ITEM, device_label="T-02")])
    client = RpcClient(http_client, settings)

    result = await client.fetch_chunk({"c\x01": _request("T-01"), "c2": _request("T-02")})

    assert result.readings["c\x01"] == []
    assert len(result.readings["c2"]) == 1
    assert [f.central_id for f in result.failures] == ["c\x01"]
    assert result.failures[0].status == 0


@pytest.mark.asyncio
async def test_invalid_json_recorded(centrals, http_client, settings):
    centrals.on("c1", lambda request: httpx.Response(200, text="<html>"))
    client = RpcClient(http_client, settings)

    result = await client.fetch_chunk({"c1": _request("T-01")})

    assert result.failures[0].status == 200
    assert result.failures[0].status_text == "Invalid JSON response"


@pytest.mark.asyncio
async def test_concurrent_fan_out_keeps_every_central(centrals, http_client, settings):
    for index in range(5):
        centrals.respond(f"c{index}", [dict(ITEM, device_label=f"T-{index}")])
    centrals.timeout("c2")
    client = RpcClient(http_client, settings.model_copy(update={"rpc_max_concurrency": 3}))

    result = await client.fetch_chunk({f"c{i}": _request(f"T-{i}") for i in range(5)})

    assert list(result.readings) == ["c0", "c1", "c2", "c3", "c4"]
    assert [f.central_id for f in result.failures] == ["c2"]
    assert sum(len(r) for r in result.readings.values()) == 4
