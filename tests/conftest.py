import json
import random
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import httpx
import pytest

from tempreport.config.settings import Settings
from tempreport.core.rpc_client import RpcClient
from tempreport.models.device import DeviceConfig
from tempreport.models.telemetry import RawReading
from tempreport.services.report_service import ReportContext, TemperatureReportService
from tempreport.storage.device_directory import DeviceDirectory

LOCAL_TZ = ZoneInfo("America/Sao_Paulo")
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class FixedRandom(random.Random):
    """Deterministic stand-in: every draw sits in the middle of its band."""

    def random(self):
        return 0.5


def local(year, month, day, hour=0, minute=0, second=0):
    return datetime(year, month, day, hour, minute, second, tzinfo=LOCAL_TZ)


def reading(when, value, device="T-01"):
    return RawReading(device_key=device, timestamp=when, value=value)


def utc_iso(when):
    return when.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class FakeCentrals:
    """Routes mock HTTP calls to per-central handlers and records them."""

    def __init__(self):
        self.handlers = {}
        self.calls = []

    def on(self, central_id, handler):
        self.handlers[central_id.lower()] = handler

    def respond(self, central_id, payload, status_code=200):
        self.on(central_id, lambda request: httpx.Response(status_code, json=payload))

    def timeout(self, central_id):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        self.on(central_id, handler)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        central_id = request.url.host.split(".")[0]
        self.calls.append((central_id, json.loads(request.content)))
        handler = self.handlers.get(central_id)
        if handler is None:
            return httpx.Response(200, json=[])
        return handler(request)

    def calls_for(self, central_id):
        return [body for cid, body in self.calls if cid == central_id]


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        gateway_domain="gateway.test",
        local_timezone="America/Sao_Paulo",
        legacy_centrals=["legacy"],
        central_aliases={"central-old": "c1"},
    )


@pytest.fixture
def centrals():
    return FakeCentrals()


@pytest.fixture
def http_client(centrals):
    return httpx.AsyncClient(transport=httpx.MockTransport(centrals))


@pytest.fixture
def device_config():
    return DeviceConfig(
        devices=["T-01", "T-02", "T-03"],
        labels={"T-01": "Fridge 1", "T-02": "Fridge 2", "T-03": "Freezer"},
        centrals={"T-01": "c1", "T-02": "c2", "T-03": "legacy"},
    )


@pytest.fixture
def make_service(settings, http_client, device_config):
    def build(**overrides):
        service_settings = settings.model_copy(update=overrides)
        return TemperatureReportService(
            RpcClient(http_client, service_settings),
            DeviceDirectory(device_config, service_settings.central_aliases),
            ReportContext.from_settings(service_settings, clock=lambda: NOW),
            service_settings,
            rng=FixedRandom(),
            clock=lambda: NOW,
        )

    return build
