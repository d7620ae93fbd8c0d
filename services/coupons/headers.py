# services/coupons/headers.py
from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")


def _norm(s: str | None) -> str:
    if not s:
        return ""
    return _WS_RE.sub("", str(s)).lower()


def resolve_header(labels: Sequence[str], canonical: str) -> Optional[str]:
    """
    Find the column label in `labels` that stands for `canonical`.

    Matching ignores case and all whitespace. The exact normalised form is
    tried first, then the common spellings of the canonical name
    ("QR Code" -> "QRCode", "QR_Code"). Returns None when nothing matches.
    """
    target = _norm(canonical)
    for label in labels:
        if _norm(label) == target:
            return label

    variants = [canonical, _WS_RE.sub("", canonical), _WS_RE.sub("_", canonical.strip())]
    for v in variants:
        vt = _norm(v)
        for label in labels:
            if _norm(label) == vt:
                return label
    return None


class HeaderMap:
    """
    Canonical field name -> literal column label for one snapshot.

    Built once per snapshot. Fields with no matching column fall back to the
    canonical name as the working key and are listed in `missing`.
    """

    def __init__(self, columns: Dict[str, str], missing: Iterable[str] = ()):
        self._columns = dict(columns)
        self.missing = tuple(missing)

    @classmethod
    def build(
            cls,
            labels: Sequence[str],
            canonical_names: Iterable[str],
            aliases: Mapping[str, Sequence[str]] | None = None,
            *,
            table: str = "",
    ) -> "HeaderMap":
        aliases = aliases or {}
        columns: Dict[str, str] = {}
        missing = []
        for name in canonical_names:
            found = resolve_header(labels, name)
            for alt in aliases.get(name, ()):
                if found is not None:
                    break
                found = resolve_header(labels, alt)
            if found is None:
                missing.append(name)
                found = name
            columns[name] = found

        if missing and labels:
            logger.warning(f"Columns not found in {table or 'sheet'}: {missing} (labels={list(labels)})")
        return cls(columns, missing)

    def label(self, canonical: str) -> str:
        return self._columns.get(canonical, canonical)

    def value(self, row: Mapping[str, str], canonical: str) -> str:
        """Trimmed cell text for `canonical` in `row` ('' when absent)."""
        return str(row.get(self.label(canonical)) or "").strip()

    def labels(self) -> list[str]:
        return list(self._columns.values())
