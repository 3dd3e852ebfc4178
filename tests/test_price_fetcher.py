"""Tests for the ENTSO-E day-ahead price fetcher over a mocked HTTP transport."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from wallee.common.exceptions import PriceFetchError
from wallee.services.price.fetcher import EntsoePriceFetcher, parse_day_ahead_document

# Local day 2024-05-14 in Brussels (CEST)
START = datetime(2024, 5, 13, 22, 0, tzinfo=timezone.utc)
END = datetime(2024, 5, 14, 22, 0, tzinfo=timezone.utc)

NAMESPACE = "urn:iec62325.351:tc57wg16:451-3:publicationdocument:7:3"


def document(resolution: str, points: list[tuple[int, str]], start=START, end=END) -> str:
    point_xml = "".join(
        f"<Point><position>{position}</position><price.amount>{amount}</price.amount></Point>"
        for position, amount in points
    )
    return (
        f'<?xml version="1.0" encoding="UTF-8"?>'
        f'<Publication_MarketDocument xmlns="{NAMESPACE}">'
        f"<mRID>1</mRID>"
        f"<TimeSeries><Period>"
        f"<timeInterval><start>{start:%Y-%m-%dT%H:%MZ}</start><end>{end:%Y-%m-%dT%H:%MZ}</end></timeInterval>"
        f"<resolution>{resolution}</resolution>"
        f"{point_xml}"
        f"</Period></TimeSeries>"
        f"</Publication_MarketDocument>"
    )


ACKNOWLEDGEMENT = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<Acknowledgement_MarketDocument xmlns="urn:iec62325.351:tc57wg16:451-1:acknowledgementdocument:7:0">'
    "<Reason><code>999</code><text>No matching data found</text></Reason>"
    "</Acknowledgement_MarketDocument>"
)


def fetcher_for(handler) -> EntsoePriceFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EntsoePriceFetcher("secret-token", request_delay_s=0, client=client)


class TestParseDayAheadDocument:
    """A44 documents become contiguous ElectricityPrice intervals."""

    def test_hourly_prices(self) -> None:
        points = [(i, f"{80 + i}.5") for i in range(1, 25)]
        prices = parse_day_ahead_document(document("PT60M", points), START, END)

        assert len(prices) == 24
        assert prices[0].start_time == START
        assert prices[0].end_time == START + timedelta(hours=1)
        assert prices[0].price_eurocent_per_mwh == 8150
        assert prices[-1].end_time == END

    def test_quarter_hour_prices(self) -> None:
        points = [(i, "50") for i in range(1, 97)]
        prices = parse_day_ahead_document(document("PT15M", points), START, END)

        assert len(prices) == 96
        assert prices[1].start_time == START + timedelta(minutes=15)

    def test_omitted_points_repeat_previous_price(self) -> None:
        points = [(1, "10"), (2, "20"), (5, "50")] + [(i, "1") for i in range(6, 25)]
        prices = parse_day_ahead_document(document("PT60M", points), START, END)

        assert [p.price_eurocent_per_mwh for p in prices[:5]] == [1000, 2000, 2000, 2000, 5000]

    def test_negative_prices_truncate_toward_zero(self) -> None:
        points = [(1, "-0.019")] + [(i, "1") for i in range(2, 25)]
        prices = parse_day_ahead_document(document("PT60M", points), START, END)

        assert prices[0].price_eurocent_per_mwh == -1

    def test_acknowledgement_means_no_data(self) -> None:
        assert parse_day_ahead_document(ACKNOWLEDGEMENT, START, END) == []

    def test_invalid_xml(self) -> None:
        with pytest.raises(PriceFetchError):
            parse_day_ahead_document("<Publication_MarketDocument>", START, END)

    def test_unsupported_resolution(self) -> None:
        with pytest.raises(PriceFetchError, match="resolution"):
            parse_day_ahead_document(document("P1D", [(1, "10")]), START, END)

    def test_points_outside_window_are_dropped(self) -> None:
        points = [(i, "10") for i in range(1, 26)]
        doc = document("PT60M", points, start=START - timedelta(hours=1), end=END)
        prices = parse_day_ahead_document(doc, START, END)

        assert len(prices) == 24
        assert prices[0].start_time == START


class TestEntsoePriceFetcher:
    """HTTP requests and error mapping."""

    async def test_request_parameters(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text=document("PT60M", [(i, "90") for i in range(1, 25)]))

        prices = await fetcher_for(handler).get_prices(START, END)

        assert len(prices) == 24
        params = requests[0].url.params
        assert requests[0].url.host == "web-api.tp.entsoe.eu"
        assert params["securityToken"] == "secret-token"
        assert params["documentType"] == "A44"
        assert params["in_Domain"] == "10YBE----------2"
        assert params["out_Domain"] == "10YBE----------2"
        assert params["TimeInterval"] == "2024-05-13T22:00Z/2024-05-14T22:00Z"

    async def test_http_error_status(self) -> None:
        fetcher = fetcher_for(lambda request: httpx.Response(401, text="Unauthorized"))

        with pytest.raises(PriceFetchError, match="401"):
            await fetcher.get_prices(START, END)

    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no route to host", request=request)

        with pytest.raises(PriceFetchError):
            await fetcher_for(handler).get_prices(START, END)

    async def test_incomplete_day_rejected(self) -> None:
        short_doc = document("PT60M", [(i, "90") for i in range(1, 13)], end=START + timedelta(hours=12))
        fetcher = fetcher_for(lambda request: httpx.Response(200, text=short_doc))

        with pytest.raises(PriceFetchError, match="expected"):
            await fetcher.get_prices(START, END)

    async def test_not_yet_published(self) -> None:
        fetcher = fetcher_for(lambda request: httpx.Response(200, text=ACKNOWLEDGEMENT))

        assert await fetcher.get_prices(START, END) == []

    async def test_requires_utc(self) -> None:
        with pytest.raises(ValueError):
            await fetcher_for(lambda request: httpx.Response(200)).get_prices(
                datetime(2024, 5, 14), datetime(2024, 5, 15)
            )
