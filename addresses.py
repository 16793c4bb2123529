"""
Delivery addresses of a user.

At most one address per user is the default. Whenever an address is made the
default, every other default of that user is cleared first.
"""
from typing import List, Optional

import structlog
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, serialize, to_obj_id, utcnow
from errors import NotFound
from schemas import Address, AddressInput, AddressUpdate

logger = structlog.get_logger(__name__)

COLLECTION = "user_addresses"


class AddressBook:
    def __init__(self, db: Database, user_id: str):
        self.db = db
        self.user_id = user_id

    @property
    def collection(self):
        return self.db[COLLECTION]

    def _unset_defaults(self):
        self.collection.update_many({"user_id": self.user_id, "is_default": True}, {"$set": {"is_default": False}})

    def list_addresses(self) -> List[Address]:
        docs = self.collection.find({"user_id": self.user_id}).sort(
            [("is_default", DESCENDING), ("created_at", DESCENDING), ("_id", ASCENDING)]
        )
        return [Address(**serialize(d)) for d in docs]

    def default_address(self) -> Optional[Address]:
        addresses = self.list_addresses()
        for a in addresses:
            if a.is_default:
                return a
        return addresses[0] if addresses else None

    def get_address(self, address_id: str) -> Address:
        doc = self.collection.find_one({"_id": to_obj_id(address_id), "user_id": self.user_id})
        if not doc:
            raise NotFound("Address not found")
        return Address(**serialize(doc))

    def add_address(self, payload: AddressInput) -> Address:
        if payload.is_default:
            self._unset_defaults()
        doc = payload.model_dump()
        doc["user_id"] = self.user_id
        address_id = create_document(COLLECTION, doc, database=self.db)
        logger.info("address_added", user_id=self.user_id, address_id=address_id)
        return self.get_address(address_id)

    def update_address(self, address_id: str, payload: AddressUpdate) -> Address:
        updates = payload.model_dump(exclude_unset=True)
        # confirm ownership before touching other defaults
        self.get_address(address_id)
        if updates.get("is_default"):
            self._unset_defaults()
        updates["updated_at"] = utcnow()
        doc = self.collection.find_one_and_update(
            {"_id": to_obj_id(address_id), "user_id": self.user_id},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise NotFound("Address not found")
        return Address(**serialize(doc))

    def delete_address(self, address_id: str) -> None:
        res = self.collection.delete_one({"_id": to_obj_id(address_id), "user_id": self.user_id})
        if res.deleted_count == 0:
            raise NotFound("Address not found")
        logger.info("address_deleted", user_id=self.user_id, address_id=address_id)

    def set_default_address(self, address_id: str) -> Address:
        self.get_address(address_id)
        self._unset_defaults()
        res = self.collection.update_one(
            {"_id": to_obj_id(address_id), "user_id": self.user_id},
            {"$set": {"is_default": True, "updated_at": utcnow()}},
        )
        if res.matched_count == 0:
            raise NotFound("Address not found")
        return self.get_address(address_id)
