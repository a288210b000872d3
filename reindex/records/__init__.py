"""Record source, normalization and identity module."""

from reindex.records.identity import IdentityGenerator, stable_identity
from reindex.records.models import RawRecord, Record, RecordType
from reindex.records.normalizer import DroppedRecord, NormalizationResult, RecordNormalizer
from reindex.records.source import JSONExportSource, RecordSource, StaticRecordSource

__all__ = [
    "DroppedRecord",
    "IdentityGenerator",
    "JSONExportSource",
    "NormalizationResult",
    "RawRecord",
    "Record",
    "RecordNormalizer",
    "RecordSource",
    "RecordType",
    "StaticRecordSource",
    "stable_identity",
]
