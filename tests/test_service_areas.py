import pytest

from errors import NotFound
from schemas import ServiceArea, ServiceAreaInput, ServiceAreaUpdate
from service_areas import ServiceAreaResolver, add_area, delete_area, list_areas, load_resolver, update_area

HYDERABAD = (17.385, 78.4867)
CHENNAI = (13.0827, 80.2707)


def area(name="Central", lat=HYDERABAD[0], lng=HYDERABAD[1], radius=5, active=True, id="a1"):
    return ServiceArea(id=id, name=name, center_latitude=lat, center_longitude=lng, radius_km=radius, is_active=active)


def test_no_areas_serves_everywhere():
    assert ServiceAreaResolver([], serve_everywhere_when_unconfigured=True).is_location_serviceable(*CHENNAI)


def test_only_inactive_areas_counts_as_unconfigured():
    resolver = ServiceAreaResolver([area(active=False)], serve_everywhere_when_unconfigured=True)
    assert resolver.is_location_serviceable(*CHENNAI)


def test_strict_policy_when_unconfigured():
    assert not ServiceAreaResolver([], serve_everywhere_when_unconfigured=False).is_location_serviceable(*CHENNAI)


def test_center_is_inside_its_own_area():
    resolver = ServiceAreaResolver([area(radius=0.5)])
    assert resolver.is_location_serviceable(*HYDERABAD)


def test_point_outside_all_active_areas():
    resolver = ServiceAreaResolver([area(radius=5)])
    assert not resolver.is_location_serviceable(*CHENNAI)


def test_union_of_circles():
    resolver = ServiceAreaResolver([
        area(id="a1"),
        area(id="a2", name="Chennai", lat=CHENNAI[0], lng=CHENNAI[1], radius=3),
    ])
    assert resolver.is_location_serviceable(*CHENNAI)
    assert resolver.is_location_serviceable(*HYDERABAD)


def test_inactive_area_is_ignored_when_others_active():
    resolver = ServiceAreaResolver([
        area(id="a1"),
        area(id="a2", name="Chennai", lat=CHENNAI[0], lng=CHENNAI[1], radius=3, active=False),
    ])
    assert not resolver.is_location_serviceable(*CHENNAI)


def test_quote_uses_nearest_center():
    resolver = ServiceAreaResolver([area()])
    quote = resolver.quote_delivery_fee(17.4399, 78.4983, 150)
    assert quote["delivery_fee"] == 49
    assert quote["serviceable"] is False
    assert resolver.quote_delivery_fee(*HYDERABAD, 250)["delivery_fee"] == 0


def test_crud_round(db):
    created = add_area(db, ServiceAreaInput(name="Zeta", center_latitude=1, center_longitude=1, radius_km=2))
    add_area(db, ServiceAreaInput(name="Alpha", center_latitude=2, center_longitude=2, radius_km=3))
    assert [a.name for a in list_areas(db)] == ["Alpha", "Zeta"]

    updated = update_area(db, created.id, ServiceAreaUpdate(is_active=False))
    assert updated.is_active is False
    assert updated.radius_km == 2

    delete_area(db, created.id)
    assert [a.name for a in list_areas(db)] == ["Alpha"]
    with pytest.raises(NotFound):
        delete_area(db, created.id)


def test_radius_must_be_positive():
    with pytest.raises(ValueError):
        ServiceAreaInput(name="Bad", center_latitude=0, center_longitude=0, radius_km=0)


def test_load_resolver_reads_database(db):
    add_area(db, ServiceAreaInput(name="Central", center_latitude=HYDERABAD[0], center_longitude=HYDERABAD[1], radius_km=5))
    resolver = load_resolver(db)
    assert resolver.is_location_serviceable(*HYDERABAD)
    assert not resolver.is_location_serviceable(*CHENNAI)
