"""
Unit tests for external provider adapters
Response parsing and request shapes for Places, Firecrawl and Vapi
"""
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from atlas.core.exceptions import ProviderError
from atlas.infrastructure.crawl.firecrawl import FirecrawlProvider, parse_document
from atlas.infrastructure.places.google_places import GooglePlacesProvider, parse_place
from atlas.infrastructure.telephony.vapi import VapiVoiceProvider

PLACE = {
    "id": "ChIJ123",
    "displayName": {"text": "Harbor Dental"},
    "formattedAddress": "12 Harbor Rd, Austin, TX",
    "internationalPhoneNumber": "+1 555-010-1000",
    "websiteUri": "https://harbordental.example",
    "rating": 4.7,
    "userRatingCount": 18,
    "location": {"latitude": 30.26, "longitude": -97.74},
}


class TestGooglePlaces:
    """Tests for GooglePlacesProvider"""

    def test_parse_place(self):
        place = parse_place(PLACE)
        assert place.id == "ChIJ123"
        assert place.name == "Harbor Dental"
        assert place.website == "https://harbordental.example"
        assert place.user_rating_count == 18
        assert place.latitude == 30.26

    def test_parse_sparse_place(self):
        place = parse_place({"id": "x"})
        assert place.name == ""
        assert place.phone is None

    def test_parse_place_national_phone(self):
        assert parse_place({"id": "x", "nationalPhoneNumber": "(555) 010-1000"}).phone == "(555) 010-1000"

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            GooglePlacesProvider("")

    @pytest.mark.asyncio
    async def test_search_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["headers"] = request.headers
            return httpx.Response(200, json={"places": [PLACE, "junk"]})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = GooglePlacesProvider("places-key", client=client)

        places = await provider.search("dentists in Austin, TX", 50)

        assert [p.id for p in places] == ["ChIJ123"]
        assert seen["body"] == {"textQuery": "dentists in Austin, TX", "maxResultCount": 20}
        assert seen["headers"]["x-goog-api-key"] == "places-key"
        assert "places.websiteUri" in seen["headers"]["x-goog-fieldmask"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_error_response(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(
            lambda request: httpx.Response(403, text="API key invalid")
        ))
        provider = GooglePlacesProvider("places-key", client=client)

        with pytest.raises(ProviderError) as exc:
            await provider.search("dentists", 5)

        assert exc.value.status_code == 403
        await client.aclose()


class TestFirecrawl:
    """Tests for FirecrawlProvider"""

    def test_parse_document_prefers_source_url(self):
        page = parse_document({
            "markdown": "# Pricing",
            "metadata": {"sourceURL": "https://a.example/pricing", "title": "Pricing", "statusCode": 200},
        })
        assert page.url == "https://a.example/pricing"
        assert page.title == "Pricing"
        assert page.status_code == 200

    def test_parse_document_fallback_url(self):
        assert parse_document({}, fallback_url="https://a.example").url == "https://a.example"

    @pytest.mark.asyncio
    async def test_status_follows_next_links(self):
        provider = FirecrawlProvider("fc-key")
        provider._request = AsyncMock(side_effect=[
            {"status": "completed", "total": 2, "completed": 2, "next": "https://next/1",
             "data": [{"metadata": {"sourceURL": "https://a.example"}}]},
            {"data": [{"metadata": {"sourceURL": "https://a.example/about"}}], "next": None},
        ])

        status = await provider.get_crawl_status("crawl-1")

        assert status.is_completed
        assert [p.url for p in status.pages] == ["https://a.example", "https://a.example/about"]
        assert status.next is None

    @pytest.mark.asyncio
    async def test_status_without_pagination(self):
        provider = FirecrawlProvider("fc-key")
        provider._request = AsyncMock(return_value={"status": "scraping", "next": "https://next/1", "data": []})

        status = await provider.get_crawl_status("crawl-1", auto_paginate=False)

        assert status.next == "https://next/1"
        provider._request.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_crawl_requires_job_id(self):
        provider = FirecrawlProvider("fc-key")
        provider._request = AsyncMock(return_value={"success": False})

        with pytest.raises(ProviderError):
            await provider.start_crawl("https://a.example", {"limit": 40})


class TestVapi:
    """Tests for VapiVoiceProvider"""

    ASSISTANT = {"name": "Northwind Digital", "metadata": {"call_id": "call-1"}}

    def test_build_request_adds_server(self):
        provider = VapiVoiceProvider("vapi-key", public_base_url="https://atlas.example/", webhook_secret="s3cret")

        request = provider.build_request("phone-number-1", "+1 555 010 2000", self.ASSISTANT)

        assert request["phoneNumberId"] == "phone-number-1"
        assert request["customer"] == {"number": "+1 555 010 2000"}
        assistant = request["squad"]["members"][0]["assistant"]
        assert assistant["server"] == {"url": "https://atlas.example/api/v1/webhooks/vapi", "secret": "s3cret"}
        assert "server" not in self.ASSISTANT

    def test_build_request_without_public_url(self):
        request = VapiVoiceProvider("vapi-key").build_request("phone-number-1", "+1", self.ASSISTANT)
        assert "server" not in request["squad"]["members"][0]["assistant"]

    @pytest.mark.asyncio
    async def test_missing_key_fails_at_call_time(self):
        with pytest.raises(ValueError):
            await VapiVoiceProvider("").create_phone_call("phone-number-1", "+1", self.ASSISTANT)
