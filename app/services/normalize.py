"""Bring analyzer payloads into the Finding shape and drop malformed ones before grouping."""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from app.schemas.findings import Finding

logger = logging.getLogger(__name__)

# Finding field names we map into.
FINDING_KEYS = frozenset({
    "file", "line_start", "line_end", "severity", "vulnerability_class",
    "title", "description", "recommendation", "raw_confidence",
})

# Generic alias: analyzer field name -> Finding field name.
# Severity aliases are handled by the Finding schema.
GENERIC_ALIASES: dict[str, str] = {
    "path": "file",
    "filename": "file",
    "file_path": "file",
    "filePath": "file",
    "lineStart": "line_start",
    "line": "line_start",
    "lineno": "line_start",
    "lineEnd": "line_end",
    "end_line": "line_end",
    "impact": "severity",
    "vulnerabilityClass": "vulnerability_class",
    "check": "vulnerability_class",
    "swc_id": "vulnerability_class",
    "message": "description",
    "rawConfidence": "raw_confidence",
    "confidence": "raw_confidence",
}


def normalize_shape(obj: Mapping[str, Any]) -> dict[str, Any]:
    """
    Map an analyzer dict to Finding field names.

    A nested ``location`` object ({file, lineStart, lineEnd}) is flattened first;
    explicit top-level fields win over aliases and over the nested location.
    """
    out: dict[str, Any] = {}
    location = obj.get("location")
    if isinstance(location, Mapping):
        for key, value in location.items():
            target = key if key in FINDING_KEYS else GENERIC_ALIASES.get(key)
            if target and value is not None:
                out[target] = value
    for key, value in obj.items():
        if value is None:
            continue
        if key in FINDING_KEYS:
            out[key] = value
        elif key in GENERIC_ALIASES:
            out.setdefault(GENERIC_ALIASES[key], value)
    # Source-local confidence is only carried when numeric.
    if "raw_confidence" in out and not isinstance(out["raw_confidence"], (int, float)):
        out.pop("raw_confidence")
    return out


def parse_source_findings(
    source: str,
    items: Iterable[Finding | Mapping[str, Any]] | None,
) -> tuple[list[Finding], int]:
    """
    Validate one source's findings. Returns (findings, rejected_count).

    Every finding is bound to ``source`` regardless of what the payload claims.
    Malformed items are logged and skipped; this never raises for bad input.
    """
    if not items:
        return [], 0

    findings: list[Finding] = []
    rejected = 0
    for i, item in enumerate(items):
        if isinstance(item, Finding):
            findings.append(
                item if item.source_tool == source.strip().lower()
                else item.model_copy(update={"source_tool": source.strip().lower()})
            )
            continue
        if not isinstance(item, Mapping):
            rejected += 1
            logger.warning(
                "Dropping finding %s from %s: expected an object, got %s",
                i,
                source,
                type(item).__name__,
                extra={"source_tool": source, "finding_index": i},
            )
            continue
        shaped = normalize_shape(item)
        shaped["source_tool"] = source
        try:
            findings.append(Finding.model_validate(shaped))
        except ValidationError as e:
            rejected += 1
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            logger.warning(
                "Dropping malformed finding %s from %s (invalid fields: %s)",
                i,
                source,
                ", ".join(fields),
                extra={"source_tool": source, "finding_index": i},
            )
    return findings, rejected
