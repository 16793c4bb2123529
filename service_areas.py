"""
Service areas: circular geofences that decide where delivery is offered.
"""
from typing import Iterable, List, Optional

import structlog
from pymongo import ReturnDocument
from pymongo.database import Database

import config
from database import create_document, serialize, to_obj_id, utcnow
from distance import calculate_delivery_fee, haversine_distance
from errors import NotFound
from schemas import ServiceArea, ServiceAreaInput, ServiceAreaUpdate

logger = structlog.get_logger(__name__)

COLLECTION = "service_areas"


class ServiceAreaResolver:
    """
    Answers containment queries over a loaded set of areas.

    A point is serviceable when it lies within the radius of at least one
    active area. With no active area at all the answer is
    `serve_everywhere_when_unconfigured`, which defaults to open.
    """

    def __init__(self, areas: Iterable[ServiceArea], serve_everywhere_when_unconfigured: Optional[bool] = None):
        self.areas = list(areas)
        if serve_everywhere_when_unconfigured is None:
            serve_everywhere_when_unconfigured = config.SERVE_EVERYWHERE_WHEN_NO_AREAS
        self.serve_everywhere_when_unconfigured = serve_everywhere_when_unconfigured

    @property
    def active_areas(self) -> List[ServiceArea]:
        return [a for a in self.areas if a.is_active]

    def is_location_serviceable(self, lat: float, lng: float) -> bool:
        active = self.active_areas
        if not active:
            return self.serve_everywhere_when_unconfigured
        return any(
            haversine_distance(a.center_latitude, a.center_longitude, lat, lng) <= a.radius_km
            for a in active
        )

    def nearest_center_distance(self, lat: float, lng: float) -> Optional[float]:
        distances = [
            haversine_distance(a.center_latitude, a.center_longitude, lat, lng)
            for a in self.active_areas
        ]
        return min(distances) if distances else None

    def quote_delivery_fee(self, lat: float, lng: float, subtotal: float) -> dict:
        distance_km = self.nearest_center_distance(lat, lng)
        # Without a configured center the distance is unknown; price as the nearest tier
        fee = calculate_delivery_fee(distance_km if distance_km is not None else 0, subtotal)
        return {
            "distance_km": round(distance_km, 3) if distance_km is not None else None,
            "delivery_fee": fee,
            "serviceable": self.is_location_serviceable(lat, lng),
        }


def _to_area(doc: dict) -> ServiceArea:
    return ServiceArea(**serialize(doc))


def list_areas(db: Database) -> List[ServiceArea]:
    return [_to_area(d) for d in db[COLLECTION].find({}).sort("name", 1)]


def load_resolver(db: Database) -> ServiceAreaResolver:
    return ServiceAreaResolver(list_areas(db))


def add_area(db: Database, payload: ServiceAreaInput) -> ServiceArea:
    area_id = create_document(COLLECTION, payload, database=db)
    logger.info("service_area_added", area_id=area_id, name=payload.name)
    return _to_area(db[COLLECTION].find_one({"_id": to_obj_id(area_id)}))


def update_area(db: Database, area_id: str, payload: ServiceAreaUpdate) -> ServiceArea:
    updates = payload.model_dump(exclude_unset=True)
    updates["updated_at"] = utcnow()
    doc = db[COLLECTION].find_one_and_update(
        {"_id": to_obj_id(area_id)},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound("Service area not found")
    return _to_area(doc)


def delete_area(db: Database, area_id: str) -> None:
    res = db[COLLECTION].delete_one({"_id": to_obj_id(area_id)})
    if res.deleted_count == 0:
        raise NotFound("Service area not found")
    logger.info("service_area_deleted", area_id=area_id)
