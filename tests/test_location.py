import httpx

from storefront.services.location import Location, LocationLookup

BASE_URL = "https://postal.test/pincode"


def lookup_with(handler, requests=None):
    def record(request):
        if requests is not None:
            requests.append(request)
        return handler(request)

    return LocationLookup(base_url=BASE_URL, timeout=1.0, transport=httpx.MockTransport(record))


async def test_successful_lookup_uses_first_post_office():
    requests = []
    lookup = lookup_with(
        lambda request: httpx.Response(200, json=[{
            "Status": "Success",
            "PostOffice": [
                {"Name": "Abids", "District": "Hyderabad", "State": "Telangana"},
                {"Name": "Koti", "District": "Hyderabad North", "State": "Telangana"},
            ],
        }]),
        requests,
    )

    assert await lookup.lookup("500001") == Location(city="Hyderabad", state="Telangana")
    assert str(requests[0].url) == f"{BASE_URL}/500001"


async def test_unknown_code_returns_none():
    lookup = lookup_with(lambda request: httpx.Response(200, json=[{"Status": "Error", "PostOffice": None}]))

    assert await lookup.lookup("999999") is None


async def test_malformed_codes_skip_the_network():
    requests = []
    lookup = lookup_with(lambda request: httpx.Response(500), requests)

    assert await lookup.lookup("5000") is None
    assert await lookup.lookup("50000a") is None
    assert await lookup.lookup("") is None
    assert requests == []


async def test_lookup_failures_are_not_fatal():
    def offline(request):
        raise httpx.ConnectError("offline")

    assert await lookup_with(offline).lookup("500001") is None
    assert await lookup_with(lambda request: httpx.Response(502)).lookup("500001") is None
    assert await lookup_with(lambda request: httpx.Response(200, text="<html>")).lookup("500001") is None
