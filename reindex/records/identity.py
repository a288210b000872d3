"""Deterministic storage identities for records.

Qdrant accepts UUID strings as point ids. The identity is the SHA-1 of the
record key laid out as a UUID, so the same logical record lands on the same
point id in every rebuild and reruns overwrite instead of duplicating.
"""

import hashlib
import uuid

from reindex.records.models import Record, RecordType


def uuid_from_key(key: str) -> str:
    """Map an arbitrary key to a UUID-formatted SHA-1 digest."""
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
    return str(uuid.UUID(hex=digest[:32]))


def stable_identity(record_type: RecordType | str, natural_id: str) -> str:
    """Identity of a record with a source-provided natural id."""
    type_label = record_type.value if isinstance(record_type, RecordType) else record_type
    return uuid_from_key(f"{type_label}-{natural_id}")


class IdentityGenerator:
    """Assigns identities to records within one index generation.

    Records with a source id map to ``stable_identity(type, natural_id)``.
    Records whose id was synthesized have no stable key, so they are keyed
    by ``(type, ordinal, build_timestamp)``: unique within the generation,
    never reused across generations.
    """

    def __init__(self, build_timestamp: int) -> None:
        """Initialize the generator.

        Args:
            build_timestamp: Build id of the index generation (epoch millis).
        """
        self.build_timestamp = build_timestamp

    def identity(self, record: Record) -> str:
        """Return the storage identity for a record."""
        if record.synthetic_id:
            return uuid_from_key(
                f"{record.type.value}-{record.ordinal}-{self.build_timestamp}"
            )
        return stable_identity(record.type, record.natural_id)
