"""Record normalizer: raw source items to canonical records."""

from collections import Counter
from collections.abc import Mapping

from pydantic import BaseModel, Field

from reindex.logging_config import get_logger
from reindex.records.models import RawRecord, Record, RecordType, coerce_fields

logger = get_logger(__name__)


class DroppedRecord(BaseModel):
    """A record left out of the run, with the stage and reason."""

    stage: str = Field(description="Pipeline stage that dropped the record")
    reason: str = Field(description="Short machine-readable reason")
    group: str | None = Field(default=None, description="Source group or record type")
    ordinal: int | None = Field(default=None, description="Position within the group")
    natural_id: str | None = Field(default=None, description="Natural id when known")
    message: str = Field(default="", description="Human-readable detail")


class NormalizationResult(BaseModel):
    """Output of a normalization pass."""

    records: list[Record] = Field(default_factory=list)
    dropped: list[DroppedRecord] = Field(default_factory=list)

    @property
    def dropped_by_reason(self) -> dict[str, int]:
        """Count of dropped records per reason."""
        return dict(Counter(d.reason for d in self.dropped))


class RecordNormalizer:
    """Converts heterogeneous raw items into canonical records.

    Items without a resolvable type are skipped and counted. A missing
    natural id is synthesized from the type and the item's ordinal.
    """

    STAGE = "normalize"

    def normalize(self, raw_records: list[RawRecord]) -> NormalizationResult:
        """Normalize a batch of raw records.

        Args:
            raw_records: Items as read from the source.

        Returns:
            Canonical records plus the items that were skipped.
        """
        result = NormalizationResult()

        for raw in raw_records:
            if not isinstance(raw.data, Mapping):
                result.dropped.append(
                    DroppedRecord(
                        stage=self.STAGE,
                        reason="not_an_object",
                        group=raw.group,
                        ordinal=raw.ordinal,
                        message=f"Expected an object, got {type(raw.data).__name__}",
                    )
                )
                continue

            record_type = RecordType.from_label(raw.group) or RecordType.from_label(
                raw.data.get("type")
            )
            if record_type is None:
                result.dropped.append(
                    DroppedRecord(
                        stage=self.STAGE,
                        reason="missing_type",
                        group=raw.group,
                        ordinal=raw.ordinal,
                        message=f"Unresolvable record type: {raw.group!r}",
                    )
                )
                continue

            result.records.append(self._to_record(raw, record_type))

        if result.dropped:
            logger.warning(
                f"Skipped {len(result.dropped)} of {len(raw_records)} raw records",
                extra={"dropped_by_reason": result.dropped_by_reason},
            )
        return result

    def _to_record(self, raw: RawRecord, record_type: RecordType) -> Record:
        data = raw.data
        raw_id = data.get("id")
        natural_id = str(raw_id).strip() if raw_id is not None else ""
        synthetic = not natural_id
        if synthetic:
            natural_id = f"{record_type.value}_{raw.ordinal}"

        fields = coerce_fields(data)
        fields.pop("id", None)
        # A "type" that merely repeats the record type is not content; a venue
        # category such as "cafe" is.
        if RecordType.from_label(fields.get("type")) is not None:  # type: ignore[arg-type]
            fields.pop("type")

        return Record(
            natural_id=natural_id,
            type=record_type,
            ordinal=raw.ordinal,
            synthetic_id=synthetic,
            fields=fields,
        )
