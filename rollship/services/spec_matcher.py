from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Protocol, Sequence

from rollship.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnitSpec:
    material_type: str | None
    basis_weight: Decimal | None
    width: Decimal | None


class LineItemLike(Protocol):
    id: int
    material_type: str | None
    basis_weight: Decimal | None
    width: Decimal | None
    required_quantity: int
    scanned_count: int


class MatchStatus(str, Enum):
    MATCHED = 'MATCHED'
    NOT_FOUND = 'NOT_FOUND'
    AMBIGUOUS = 'AMBIGUOUS'


@dataclass
class MatchResult:
    status: MatchStatus
    line_item: LineItemLike | None = None
    candidate_ids: list[int] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.line_item is not None


def _normalize_type(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip().lower()
    return cleaned or None


def _within(line_value: Decimal | None, unit_value: Decimal | None, tolerance: Decimal) -> bool:
    if line_value is None:
        return True
    if unit_value is None:
        return False
    return abs(Decimal(line_value) - Decimal(unit_value)) < tolerance


def spec_matches(spec: UnitSpec, line_item: LineItemLike, *, tolerance: float | None = None) -> bool:
    """True when every field set on the line item agrees with the unit.

    Unset line item fields mean "any". Numeric fields compare within the
    measurement tolerance.
    """
    tol = Decimal(str(settings.match_tolerance if tolerance is None else tolerance))
    wanted_type = _normalize_type(line_item.material_type)
    if wanted_type is not None and wanted_type != _normalize_type(spec.material_type):
        return False
    return _within(line_item.basis_weight, spec.basis_weight, tol) and _within(line_item.width, spec.width, tol)


def outstanding(line_items: Sequence[LineItemLike]) -> list[LineItemLike]:
    return [item for item in line_items if item.scanned_count < item.required_quantity]


def match_line_item(
    spec: UnitSpec,
    line_items: Sequence[LineItemLike],
    *,
    tolerance: float | None = None,
) -> MatchResult:
    # line_items must already be in declared order; the first candidate wins.
    candidates = [item for item in outstanding(line_items) if spec_matches(spec, item, tolerance=tolerance)]
    if not candidates:
        return MatchResult(status=MatchStatus.NOT_FOUND)

    candidate_ids = [item.id for item in candidates]
    if len(candidates) > 1:
        logger.warning(
            'Unit specification matches %d line items; selecting the first in declared order',
            len(candidates),
            extra={'candidate_line_item_ids': candidate_ids, 'selected_line_item_id': candidates[0].id},
        )
        return MatchResult(status=MatchStatus.AMBIGUOUS, line_item=candidates[0], candidate_ids=candidate_ids)
    return MatchResult(status=MatchStatus.MATCHED, line_item=candidates[0], candidate_ids=candidate_ids)
