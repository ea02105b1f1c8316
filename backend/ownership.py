"""Ownership-chain resolution.

The document store has no foreign keys and no row-level authorization, so
every access walks from the requested entity up to its owning user:

    medication_doses --medicationId--> medications --patientId--> patients
        --ownerUserId--> users

A chain only describes the collections and foreign-key fields involved; the
walk itself is the same for every entity type.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase

from errors import Forbidden, NotFound
from store import EntityStore, is_valid_identifier

logger = logging.getLogger(__name__)

USERS = "users"
PATIENTS = "patients"
HEALTH_RECORDS = "health_records"
MEDICATIONS = "medications"
MEDICATION_DOSES = "medication_doses"
MEDICATION_REMINDERS = "medication_reminders"


@dataclass(frozen=True)
class OwnershipChain:
    leaf_collection: str
    # (foreign_key_field on the child, parent collection), nearest parent first.
    # The last hop must point at the users collection.
    hops: Tuple[Tuple[str, str], ...]
    label: str = "Entity"

    @property
    def parent_field(self) -> str:
        return self.hops[0][0]


PATIENT_CHAIN = OwnershipChain(
    PATIENTS,
    (("ownerUserId", USERS),),
    label="Patient",
)
HEALTH_RECORD_CHAIN = OwnershipChain(
    HEALTH_RECORDS,
    (("patientId", PATIENTS),) + PATIENT_CHAIN.hops,
    label="Health record",
)
MEDICATION_CHAIN = OwnershipChain(
    MEDICATIONS,
    (("patientId", PATIENTS),) + PATIENT_CHAIN.hops,
    label="Medication",
)
MEDICATION_DOSE_CHAIN = OwnershipChain(
    MEDICATION_DOSES,
    (("medicationId", MEDICATIONS),) + MEDICATION_CHAIN.hops,
    label="Medication dose",
)
MEDICATION_REMINDER_CHAIN = OwnershipChain(
    MEDICATION_REMINDERS,
    (("medicationId", MEDICATIONS),) + MEDICATION_CHAIN.hops,
    label="Medication reminder",
)


@dataclass
class Resolution:
    leaf: dict
    # Nearest parent first, the owning user last.
    ancestors: List[dict] = field(default_factory=list)

    @property
    def parent(self) -> Optional[dict]:
        return self.ancestors[0] if self.ancestors else None

    @property
    def owner(self) -> Optional[dict]:
        return self.ancestors[-1] if self.ancestors else None


class OwnershipResolver:
    """Re-establishes existence and ownership for one request.

    Results are never cached; every call walks the full chain again.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    def _store(self, collection_name: str) -> EntityStore:
        return EntityStore(self.db[collection_name])

    async def resolve(self, chain: OwnershipChain, leaf_id: str, requester_user_id: str) -> Resolution:
        """Return the leaf and its ancestors, or raise NotFound / Forbidden.

        An id that is not a well-formed identifier cannot name any entity, so
        it is NotFound without a store round trip. A broken chain (missing or
        malformed foreign key, missing parent) is also NotFound because the
        leaf is unreachable.
        """
        not_found = NotFound(f"{chain.label} not found")
        if not is_valid_identifier(leaf_id):
            raise not_found

        leaf = await self._store(chain.leaf_collection).get_by_id(leaf_id)
        if leaf is None:
            raise not_found

        ancestors: List[dict] = []
        child = leaf
        for fk_field, parent_collection in chain.hops:
            parent_id = child.get(fk_field)
            if not is_valid_identifier(parent_id):
                logger.warning(
                    f"Broken ownership chain: {chain.leaf_collection} {leaf_id} has "
                    f"malformed {fk_field}={parent_id!r}"
                )
                raise not_found
            parent = await self._store(parent_collection).get_by_id(parent_id)
            if parent is None:
                logger.warning(
                    f"Broken ownership chain: {chain.leaf_collection} {leaf_id} references "
                    f"missing {parent_collection} {parent_id}"
                )
                raise not_found
            logger.debug(f"Resolved {fk_field} -> {parent_collection} {parent_id}")
            ancestors.append(parent)
            child = parent

        root_id = str(child["_id"])
        if root_id != requester_user_id:
            logger.info(f"User {requester_user_id} denied access to {chain.leaf_collection} {leaf_id}")
            raise Forbidden(f"Unauthorized access to this {chain.label.lower()}")

        return Resolution(leaf=leaf, ancestors=ancestors)
