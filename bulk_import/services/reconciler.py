from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Sequence

from ..models.field_spec import ColumnMapping
from ..models.reconciliation import EligibleRow, ReconciliationResult, RowStatus
from ..models.row_data import Grid, ProjectedRow
from ..remote.catalog_matcher import CatalogMatcher

"""Reconciliation of row identifiers against the catalog.

The matcher is called once per validation with the deduplicated identifier
list, never per row. Identifiers are compared exactly as received
(case-sensitive, no normalisation here).

Which rows may be executed is a pipeline policy: with require_full_match
every identifier must resolve before anything is written (opening stock);
without it only the matched subset is written (bulk deactivation).
"""

logger = logging.getLogger(__name__)


class ReconciliationCallError(Exception):
    """The Catalog Matcher call failed; validation can be retried."""


class ExecutionBlockedError(Exception):
    """Execution refused before any remote write (stale/missing validation, full-match gate)."""


def snapshot_fingerprint(grid: Grid, header_index: int, mapping: ColumnMapping) -> str:
    """Stable digest of the inputs a reconciliation was computed from."""
    digest = hashlib.sha256()
    digest.update(json.dumps([list(r) for r in grid], ensure_ascii=False).encode("utf-8"))
    digest.update(str(header_index).encode("ascii"))
    digest.update(json.dumps(sorted(mapping.to_plain_dict().items()), ensure_ascii=False).encode("utf-8"))
    return digest.hexdigest()


def distinct_identifiers(rows: Sequence[ProjectedRow], key: str) -> list[str]:
    seen: dict[str, None] = {}
    for row in rows:
        code = row.get(key)
        if code.strip():
            seen.setdefault(code, None)
    return list(seen)


def reconcile(
    rows: Sequence[ProjectedRow],
    key: str,
    matcher: CatalogMatcher,
    fingerprint: str,
) -> ReconciliationResult:
    codes = distinct_identifiers(rows, key)
    if not codes:
        logger.warning("no identifiers in column %r; nothing to reconcile", key)
        return ReconciliationResult((), (), (), {}, fingerprint)

    try:
        response = matcher(codes)
    except Exception as e:
        raise ReconciliationCallError(f"catalog matcher failed: {e}") from e

    requested = set(codes)
    targets = {e["code"]: e for e in response.matched if e["code"] in requested}
    already = {e["code"] for e in response.already_inactive if e["code"] in requested}
    matched = tuple(c for c in codes if c in targets and c not in already)
    already_done = tuple(c for c in codes if c in already)
    # 応答に含まれないコードも未一致として扱う
    unmatched = tuple(c for c in codes if c not in targets and c not in already)

    logger.info(
        "reconciled identifiers=%d matched=%d unmatched=%d already_done=%d",
        len(codes),
        len(matched),
        len(unmatched),
        len(already_done),
    )
    return ReconciliationResult(
        matched=matched,
        unmatched=unmatched,
        already_done=already_done,
        targets={c: targets[c] for c in matched},
        fingerprint=fingerprint,
    )


def annotate(
    rows: Sequence[ProjectedRow], key: str, result: ReconciliationResult
) -> list[tuple[ProjectedRow, RowStatus]]:
    return [(row, result.status_of(row.get(key))) for row in rows]


def eligible_rows(
    rows: Sequence[ProjectedRow],
    key: str,
    result: ReconciliationResult,
    dedupe: bool = False,
) -> list[EligibleRow]:
    out: list[EligibleRow] = []
    taken: set[str] = set()
    for row in rows:
        code = row.get(key)
        if result.status_of(code) is not RowStatus.MATCHED:
            continue
        if dedupe:
            if code in taken:
                continue
            taken.add(code)
        out.append(EligibleRow(row=row, identifier=code, target=result.targets.get(code, {})))
    return out


def check_executable(result: ReconciliationResult, require_full_match: bool) -> None:
    if require_full_match and result.has_unmatched:
        raise ExecutionBlockedError(
            f"{len(result.unmatched)} identifier(s) not found in catalog; "
            f"all must match before execution: {', '.join(result.unmatched[:10])}"
        )
