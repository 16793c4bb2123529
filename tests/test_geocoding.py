import httpx

from geocoding import LocationCache, ReverseGeocoder, parse_google_result, parse_nominatim_result
from schemas import UserLocation

GOOGLE_OK = {
    "status": "OK",
    "results": [{
        "address_components": [
            {"long_name": "Banjara Hills", "types": ["sublocality_level_1", "sublocality"]},
            {"long_name": "Hyderabad", "types": ["locality", "political"]},
            {"long_name": "Telangana", "types": ["administrative_area_level_1", "political"]},
            {"long_name": "India", "types": ["country", "political"]},
        ]
    }],
}

NOMINATIM_OK = {
    "display_name": "Madhapur, Hyderabad, Telangana, India",
    "address": {"suburb": "Madhapur", "town": "Serilingampally", "state": "Telangana", "country": "India"},
}


def client_for(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_google_prefers_locality():
    loc = parse_google_result(17.41, 78.44, GOOGLE_OK["results"][0])
    assert loc.city == "Hyderabad"
    assert loc.state == "Telangana"
    assert loc.fullAddress == "Hyderabad, Telangana, India"


def test_nominatim_city_precedence():
    loc = parse_nominatim_result(17.44, 78.39, NOMINATIM_OK)
    assert loc.city == "Serilingampally"
    assert loc.state == "Telangana"


def test_google_used_when_key_present():
    def handler(request):
        assert "maps.googleapis.com" in request.url.host
        return httpx.Response(200, json=GOOGLE_OK)

    loc = ReverseGeocoder(client_for(handler), google_api_key="key").reverse_geocode(17.41, 78.44)
    assert loc.city == "Hyderabad"


def test_falls_back_to_nominatim_when_google_fails():
    calls = []

    def handler(request):
        calls.append(request.url.host)
        if "googleapis" in request.url.host:
            return httpx.Response(500)
        return httpx.Response(200, json=NOMINATIM_OK)

    loc = ReverseGeocoder(client_for(handler), google_api_key="key").reverse_geocode(17.44, 78.39)
    assert loc.city == "Serilingampally"
    assert len(calls) == 2


def test_unknown_when_every_provider_fails():
    loc = ReverseGeocoder(client_for(lambda r: httpx.Response(503)), google_api_key="").reverse_geocode(17.44, 78.39)
    assert loc.city == "Unknown"
    assert loc.fullAddress == "17.4400, 78.3900"


def test_location_cache_round(storage):
    cache = LocationCache(storage)
    assert cache.get() is None
    cache.save(UserLocation(lat=1.0, lng=2.0, city="X", state="Y", fullAddress="X, Y"))
    assert cache.get().city == "X"


def test_geocoder_closes_only_its_own_client():
    owned = ReverseGeocoder(google_api_key="")
    owned.close()
    assert owned.client.is_closed

    shared = client_for(lambda r: httpx.Response(200, json=NOMINATIM_OK))
    ReverseGeocoder(shared, google_api_key="").close()
    assert not shared.is_closed


def test_request_geocoder_is_closed_afterwards():
    import main

    dependency = main.get_geocoder()
    geocoder = next(dependency)
    assert not geocoder.client.is_closed
    dependency.close()
    assert geocoder.client.is_closed
