"""
Lab Pool — Result Validator

Checks a completion payload before the lifecycle service lets it near
the state machine. An invalid payload never reaches the store.

Rules:
  - at least one entry
  - every entry has a non-empty label and value
  - flag defaults to NORMAL; only NORMAL and CRITICAL are accepted
  - values are free text; qualitative results ("positive", "trace")
    are as valid as numbers
"""

from __future__ import annotations

from typing import Any, Iterable

from workpool.errors import ValidationError
from workpool.types import ResultEntry, ResultFlag

_TEXT_FIELDS = ("unit", "reference_range", "note")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _entry_errors(index: int, raw: Any) -> tuple[ResultEntry | None, list[str]]:
    prefix = f"results[{index}]"
    if isinstance(raw, ResultEntry):
        raw = raw.to_dict()
    if not isinstance(raw, dict):
        return None, [f"{prefix}: must be an object"]

    errors = []
    label = _text(raw.get("label"))
    value = _text(raw.get("value"))
    if not label:
        errors.append(f"{prefix}.label: required")
    if not value:
        errors.append(f"{prefix}.value: required")

    flag_raw = raw.get("flag") or ResultFlag.NORMAL.value
    try:
        flag = flag_raw if isinstance(flag_raw, ResultFlag) else ResultFlag(str(flag_raw).upper())
    except ValueError:
        errors.append(
            f"{prefix}.flag: must be one of {[f.value for f in ResultFlag]}, got {flag_raw!r}"
        )
        flag = ResultFlag.NORMAL

    if errors:
        return None, errors
    return ResultEntry(
        label=label,
        value=value,
        flag=flag,
        **{name: _text(raw.get(name)) for name in _TEXT_FIELDS},
    ), []


def validate_results(entries: Iterable[Any] | None) -> list[ResultEntry]:
    """
    Normalize and validate proposed result entries.

    Accepts ResultEntry instances or plain dicts. Returns the normalized
    entries; raises ValidationError carrying one message per bad field.
    """
    if entries is None or isinstance(entries, (str, bytes, dict)):
        raise ValidationError(
            "results must be a non-empty list",
            ["results: must be a non-empty list"],
        )
    entries = list(entries)
    if not entries:
        raise ValidationError(
            "at least one result entry is required",
            ["results: at least one entry is required"],
        )

    normalized: list[ResultEntry] = []
    field_errors: list[str] = []
    for i, raw in enumerate(entries):
        entry, errors = _entry_errors(i, raw)
        field_errors.extend(errors)
        if entry is not None:
            normalized.append(entry)

    if field_errors:
        raise ValidationError(
            f"{len(field_errors)} invalid result field(s)", field_errors,
        )
    return normalized
