"""Embedding-input composition and payload sanitization.

Which fields feed the embedding text and the stored payload is driven by a
per-type profile table rather than one code path per record type.
"""

import re
from collections.abc import Mapping

from pydantic import BaseModel, Field

from reindex.exceptions import CompositionError
from reindex.logging_config import get_logger
from reindex.records.models import FieldValue, Record, RecordType

logger = get_logger(__name__)

# C0, DEL and C1 control characters plus lone surrogates.
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f\ud800-\udfff]")
_WHITESPACE = re.compile(r"\s+")

BASE_PAYLOAD_FIELDS = ("title", "description", "city", "country")
COMMON_URL_FIELDS = (
    "url",
    "cover_image_url",
    "video_url",
    "related_video_url",
    "google_maps_direct_url",
)


def clean_text(value: object) -> str:
    """Strip control characters and collapse whitespace."""
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    text = _CONTROL_CHARS.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def clean_url(value: object) -> str:
    """Strip control characters only; everything else is kept verbatim."""
    if not isinstance(value, str):
        return ""
    return _CONTROL_CHARS.sub("", value).strip()


class TypeProfile(BaseModel):
    """Field layout for one record type.

    Attributes:
        text_fields: Ordered scalar fields joined into the embedding text.
        list_fields: List-valued fields flattened by whitespace after the
            scalar fields.
        payload_text_fields: Extra payload fields stored as cleaned text.
        payload_list_fields: Extra payload fields stored as cleaned lists.
        payload_raw_fields: Extra payload scalars stored untouched.
        url_fields: Payload fields sanitized as URLs.
    """

    text_fields: list[str] = Field(default_factory=lambda: ["title", "description"])
    list_fields: list[str] = Field(default_factory=list)
    payload_text_fields: list[str] = Field(default_factory=list)
    payload_list_fields: list[str] = Field(default_factory=list)
    payload_raw_fields: list[str] = Field(default_factory=list)
    url_fields: list[str] = Field(default_factory=list)


DEFAULT_PROFILES: dict[RecordType, TypeProfile] = {
    RecordType.ROUTE: TypeProfile(
        text_fields=["title", "description", "city", "country", "travel_mode", "duration"],
        payload_text_fields=["travel_mode", "duration"],
        url_fields=["url", "google_maps_direct_url"],
    ),
    RecordType.VENUE: TypeProfile(
        text_fields=["title", "description", "city", "country", "type"],
        list_fields=["audience", "highlights"],
        payload_list_fields=["audience", "highlights"],
        url_fields=["url", "google_maps_direct_url"],
    ),
    RecordType.CURATION: TypeProfile(
        text_fields=["title", "description", "city", "country", "travel_type", "best_season"],
        payload_text_fields=["travel_type", "best_season"],
        url_fields=["url", "cover_image_url", "google_maps_direct_url"],
    ),
    RecordType.GROUP_UP: TypeProfile(
        text_fields=["title", "description", "note", "creator_full_name"],
        payload_text_fields=["note", "creator_full_name", "meeting_point"],
        payload_raw_fields=["start_time"],
        url_fields=["url", "google_maps_direct_url"],
    ),
    # Guides are mostly practical prose; the description is repeated to weigh it.
    RecordType.SURVIVAL_GUIDE: TypeProfile(
        text_fields=["title", "description", "country", "description"],
        url_fields=["url", "cover_image_url", "related_video_url", "google_maps_direct_url"],
    ),
    RecordType.DEFAULT: TypeProfile(),
}


class ComposedRecord(BaseModel):
    """Embedding input and payload for one record."""

    text: str = Field(description="Embedding input")
    payload: dict[str, FieldValue] = Field(description="Sanitized payload")
    fallback: bool = Field(default=False, description="Text fell back to id and type")


class TextComposer:
    """Builds embedding input and payloads from records.

    Composition is pure: the same record always yields the same text and
    payload.
    """

    def __init__(
        self,
        profiles: Mapping[RecordType, TypeProfile] | None = None,
        min_text_length: int = 5,
    ) -> None:
        """Initialize the composer.

        Args:
            profiles: Per-type field layout. Defaults to DEFAULT_PROFILES.
            min_text_length: Composed text shorter than this falls back to
                the record's id and type.
        """
        self._profiles = dict(DEFAULT_PROFILES if profiles is None else profiles)
        self.min_text_length = min_text_length

    def profile_for(self, record_type: RecordType) -> TypeProfile:
        """Return the profile for a type, falling back to the default profile.

        Raises:
            CompositionError: If neither the type nor a default profile is configured.
        """
        profile = self._profiles.get(record_type) or self._profiles.get(RecordType.DEFAULT)
        if profile is None:
            raise CompositionError(
                f"No composition profile for record type: {record_type.value}",
                details={"type": record_type.value},
            )
        return profile

    def compose(self, record: Record) -> str:
        """Build the embedding input string for a record."""
        text, _ = self._compose_text(record, self.profile_for(record.type))
        return text

    def build_payload(self, record: Record) -> dict[str, FieldValue]:
        """Build the sanitized payload stored with the record's vector."""
        return self._build_payload(record, self.profile_for(record.type))

    def compose_record(self, record: Record) -> ComposedRecord:
        """Build both embedding input and payload.

        Raises:
            CompositionError: If the record type has no profile.
        """
        profile = self.profile_for(record.type)
        text, fallback = self._compose_text(record, profile)
        if fallback:
            logger.debug(
                "Composed text too short, using id and type",
                extra={"natural_id": record.natural_id, "type": record.type.value},
            )
        return ComposedRecord(
            text=text,
            payload=self._build_payload(record, profile),
            fallback=fallback,
        )

    def _compose_text(self, record: Record, profile: TypeProfile) -> tuple[str, bool]:
        parts: list[str] = []
        for name in profile.text_fields:
            value = record.get(name)
            if isinstance(value, str | int | float) and not isinstance(value, bool):
                parts.append(clean_text(value))
        for name in profile.list_fields:
            value = record.get(name)
            if isinstance(value, list):
                parts.append(clean_text(" ".join(value)))

        text = " ".join(part for part in parts if part)
        if len(text) < self.min_text_length:
            return f"{clean_text(record.natural_id)} {record.type.value}", True
        return text, False

    def _build_payload(self, record: Record, profile: TypeProfile) -> dict[str, FieldValue]:
        payload: dict[str, FieldValue] = {"id": clean_text(record.natural_id)}
        for name in BASE_PAYLOAD_FIELDS:
            payload[name] = clean_text(record.get(name) or "")
        payload["type"] = record.type.value

        for name in profile.payload_text_fields:
            value = record.get(name)
            if value not in (None, ""):
                payload[name] = clean_text(value)
        for name in profile.payload_list_fields:
            value = record.get(name)
            if value is not None:
                payload[name] = [clean_text(v) for v in value] if isinstance(value, list) else []
        for name in profile.payload_raw_fields:
            value = record.get(name)
            if value not in (None, ""):
                payload[name] = value

        for name in [*profile.url_fields, *COMMON_URL_FIELDS]:
            if name in payload:
                continue
            value = record.get(name)
            if value:
                payload[name] = clean_url(value)

        return payload
