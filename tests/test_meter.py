"""Tests for the HomeWizard meter client over a mocked HTTP transport."""

import httpx
import pytest

from wallee.common.exceptions import MeterDataError
from wallee.services.device.meter import HomeWizardMeterDataProvider

URL = "http://192.168.1.60/api/v1/data"

HOMEWIZARD_RESPONSE = {
    "wifi_ssid": "home",
    "wifi_strength": 100,
    "total_power_import_kwh": 13779.338,
    "total_power_import_t1_kwh": 10830.511,
    "total_power_import_t2_kwh": 2948.827,
    "active_power_w": 3245,
    "active_current_l1_a": 5.1,
    "active_current_l2_a": 4.2,
    "active_current_l3_a": 4.9,
    "active_voltage_l1_v": 231.2,
    "active_voltage_l2_v": 229.8,
    "active_voltage_l3_v": 230.4,
}


def provider_for(handler) -> HomeWizardMeterDataProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HomeWizardMeterDataProvider(URL, client=client)


class TestHomeWizardMeterDataProvider:
    """JSON responses are mapped to MeterData; every failure is a MeterDataError."""

    async def test_parses_response(self) -> None:
        provider = provider_for(lambda request: httpx.Response(200, json=HOMEWIZARD_RESPONSE))

        data = await provider.get_meter_data()

        assert data.total_active_power == 3245
        assert data.currents == (5.1, 4.2, 4.9)
        assert data.voltage_sum == pytest.approx(691.4)
        assert data.total_power_import_kwh == 13779.338
        assert data.total_power_import_t2_kwh == 2948.827
        await provider.close()

    async def test_requests_configured_url(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json=HOMEWIZARD_RESPONSE)

        provider = provider_for(handler)
        await provider.get_meter_data()
        await provider.get_meter_data()

        assert seen == [URL, URL]

    async def test_tariff_split_is_optional(self) -> None:
        body = {k: v for k, v in HOMEWIZARD_RESPONSE.items() if "_t1_" not in k and "_t2_" not in k}
        provider = provider_for(lambda request: httpx.Response(200, json=body))

        data = await provider.get_meter_data()

        assert data.total_power_import_t1_kwh is None

    async def test_http_error_status(self) -> None:
        provider = provider_for(lambda request: httpx.Response(503, text="busy"))

        with pytest.raises(MeterDataError) as exc_info:
            await provider.get_meter_data()

        assert exc_info.value.url == URL
        assert exc_info.value.recoverable

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(MeterDataError):
            await provider_for(handler).get_meter_data()

    async def test_non_json_body(self) -> None:
        provider = provider_for(lambda request: httpx.Response(200, text="<html>login</html>"))

        with pytest.raises(MeterDataError):
            await provider.get_meter_data()

    async def test_empty_body(self) -> None:
        provider = provider_for(lambda request: httpx.Response(200, json={}))

        with pytest.raises(MeterDataError, match="empty response"):
            await provider.get_meter_data()

    async def test_missing_key(self) -> None:
        body = dict(HOMEWIZARD_RESPONSE)
        del body["active_current_l2_a"]
        provider = provider_for(lambda request: httpx.Response(200, json=body))

        with pytest.raises(MeterDataError, match="expected data"):
            await provider.get_meter_data()
