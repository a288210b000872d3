"""Record data models."""

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

Scalar = str | int | float | bool | None
FieldValue = Scalar | list[str]


class RecordType(str, Enum):
    """Kinds of content the upstream export carries."""

    ROUTE = "route"
    VENUE = "venue"
    CURATION = "curation"
    GROUP_UP = "group_up"
    SURVIVAL_GUIDE = "survival_guide"
    DEFAULT = "default"

    @classmethod
    def from_label(cls, label: str | None) -> "RecordType | None":
        """Resolve a source group name or item type label.

        Accepts the export's array keys (``routes``, ``group_ups``,
        ``groupUps``...) as well as singular forms. Returns None when
        the label is unknown.
        """
        if not label or not isinstance(label, str):
            return None
        return _LABELS.get(label.strip().lower().replace("-", "_"))


_LABELS: dict[str, RecordType] = {
    "route": RecordType.ROUTE,
    "routes": RecordType.ROUTE,
    "venue": RecordType.VENUE,
    "venues": RecordType.VENUE,
    "curation": RecordType.CURATION,
    "curations": RecordType.CURATION,
    "group_up": RecordType.GROUP_UP,
    "group_ups": RecordType.GROUP_UP,
    "groupup": RecordType.GROUP_UP,
    "groupups": RecordType.GROUP_UP,
    "survival_guide": RecordType.SURVIVAL_GUIDE,
    "survival_guides": RecordType.SURVIVAL_GUIDE,
    "default": RecordType.DEFAULT,
}


class RawRecord(BaseModel):
    """An item as handed over by a record source.

    Attributes:
        group: Source-declared type (the export array it came from).
        ordinal: Position of the item within its group.
        data: The item itself, untouched.
    """

    model_config = ConfigDict(frozen=True)

    group: str | None = Field(default=None, description="Source-declared type")
    ordinal: int = Field(ge=0, description="Position within the source group")
    data: Any = Field(description="Raw item as read from the source")


class Record(BaseModel):
    """Canonical, immutable record with a stable natural key.

    Attributes:
        natural_id: Source id, or ``<type>_<ordinal>`` when the source has none.
        type: Resolved record type.
        ordinal: Position within the source group.
        synthetic_id: True when ``natural_id`` was synthesized.
        fields: Remaining item fields.
    """

    model_config = ConfigDict(frozen=True)

    natural_id: str = Field(min_length=1, description="Stable natural key")
    type: RecordType = Field(description="Record type")
    ordinal: int = Field(default=0, ge=0, description="Position within the source group")
    synthetic_id: bool = Field(default=False, description="Natural id was synthesized")
    fields: dict[str, FieldValue] = Field(
        default_factory=dict,
        description="Record fields",
    )

    def get(self, name: str, default: FieldValue = None) -> FieldValue:
        """Return a field value, or ``default`` when absent."""
        return self.fields.get(name, default)


def coerce_fields(data: Mapping[str, Any]) -> dict[str, FieldValue]:
    """Keep scalar and string-list values; drop nested structures."""
    fields: dict[str, FieldValue] = {}
    for key, value in data.items():
        if value is None or isinstance(value, str | int | float | bool):
            fields[str(key)] = value
        elif isinstance(value, list | tuple):
            fields[str(key)] = [str(item) for item in value if isinstance(item, str | int | float)]
    return fields
