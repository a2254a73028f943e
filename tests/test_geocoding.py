"""Tests for reverse geocoding and nearby places.

Covers:
- Address compaction (country and postal code removed)
- Fallback "lat, lng" string on bypass mode, errors and empty results
- Nearby places parsing; [] on failure
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.enrichment.geocoding import GeocodingClient, compact_address, format_coordinates

US_COMPONENTS = [
    {"long_name": "62701", "short_name": "62701", "types": ["postal_code"]},
    {"long_name": "United States", "short_name": "US", "types": ["country", "political"]},
]


def _make_response(payload: dict) -> MagicMock:
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status = MagicMock()
    return resp


def _client() -> GeocodingClient:
    client = GeocodingClient()
    client._api_key = "test-key"  # not bypass mode
    return client


def _patch_http(mock_client_cls, *, payload=None, error=None):
    mock_http = AsyncMock()
    if error is not None:
        mock_http.get = AsyncMock(side_effect=error)
    else:
        mock_http.get = AsyncMock(return_value=_make_response(payload))
    mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_http)
    mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
    return mock_http


class TestFormatting:
    def test_format_coordinates_six_decimals(self):
        assert format_coordinates(1.5, -2.25) == "1.500000, -2.250000"

    def test_compact_address_us(self):
        formatted = "100 N 5th St, Springfield, IL 62701, USA"
        assert compact_address(formatted, US_COMPONENTS) == "100 N 5th St, Springfield, IL"

    def test_compact_address_without_components(self):
        assert compact_address("Via Roma 1, Torino", []) == "Via Roma 1, Torino"


class TestReverseGeocode:
    @pytest.mark.asyncio
    async def test_bypass_mode_returns_coordinates(self):
        client = GeocodingClient()
        client._api_key = ""

        with patch("httpx.AsyncClient") as mock_client_cls:
            name = await client.reverse_geocode(45.0, 7.5)
            mock_client_cls.assert_not_called()

        assert name == "45.000000, 7.500000"

    @pytest.mark.asyncio
    async def test_success_compacts_first_result(self):
        payload = {
            "status": "OK",
            "results": [{
                "formatted_address": "100 N 5th St, Springfield, IL 62701, USA",
                "address_components": US_COMPONENTS,
            }],
        }
        with patch("httpx.AsyncClient") as mock_client_cls:
            mock_http = _patch_http(mock_client_cls, payload=payload)
            name = await _client().reverse_geocode(39.8, -89.6)

        assert name == "100 N 5th St, Springfield, IL"
        params = mock_http.get.call_args.kwargs["params"]
        assert params["latlng"] == "39.8,-89.6"
        assert params["key"] == "test-key"

    @pytest.mark.asyncio
    async def test_zero_results_falls_back(self):
        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(mock_client_cls, payload={"status": "ZERO_RESULTS", "results": []})
            name = await _client().reverse_geocode(0.0, 0.0)

        assert name == "0.000000, 0.000000"

    @pytest.mark.asyncio
    async def test_network_error_falls_back(self):
        with (
            patch("src.enrichment.geocoding.emit", new_callable=AsyncMock) as mock_emit,
            patch("httpx.AsyncClient") as mock_client_cls,
        ):
            _patch_http(mock_client_cls, error=httpx.ReadTimeout("timeout"))
            name = await _client().reverse_geocode(1.0, 2.0)

        assert name == "1.000000, 2.000000"
        mock_emit.assert_awaited_once()


class TestNearbyPlaces:
    @pytest.mark.asyncio
    async def test_parses_results(self):
        payload = {
            "status": "OK",
            "results": [
                {
                    "name": "Community Shelter",
                    "vicinity": "2 Oak Ave",
                    "place_id": "abc",
                    "geometry": {"location": {"lat": 1.1, "lng": 2.2}},
                },
                {"name": "No geometry"},
            ],
        }
        with patch("httpx.AsyncClient") as mock_client_cls:
            mock_http = _patch_http(mock_client_cls, payload=payload)
            places = await _client().nearby_places(1.0, 2.0)

        assert len(places) == 1
        assert places[0].name == "Community Shelter"
        assert places[0].latitude == 1.1
        assert mock_http.get.call_args.kwargs["params"]["keyword"] == "shelter"

    @pytest.mark.asyncio
    async def test_error_status_returns_empty(self):
        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(mock_client_cls, payload={"status": "REQUEST_DENIED"})
            assert await _client().nearby_places(1.0, 2.0) == []

    @pytest.mark.asyncio
    async def test_bypass_mode_returns_empty(self):
        client = GeocodingClient()
        client._api_key = ""
        assert await client.nearby_places(1.0, 2.0) == []
