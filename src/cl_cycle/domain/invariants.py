"""Ledger invariants over a cycle's lines, allocations and participations.

Each check returns a list of violation strings (empty when consistent); the
lifecycle service raises InvariantViolationError on the first one at write
time, and verify_invariants reports them all.
"""

import logging

from src.cl_common.enums import FillSide
from src.cl_cycle.domain.models import Allocation, CycleLine

logger = logging.getLogger(__name__)


def check_line(line: CycleLine) -> list[str]:
    violations: list[str] = []
    if not 0 <= line.listed_units <= line.units_bought:
        violations.append(
            f"line {line.id}: listed_units {line.listed_units} outside 0..{line.units_bought}"
        )
    if line.units_sold > line.units_bought:
        violations.append(
            f"line {line.id}: units_sold {line.units_sold} > units_bought {line.units_bought}"
        )
    if line.units_bought == 0 and line.buy_cost_cents != 0:
        violations.append(f"line {line.id}: buy_cost {line.buy_cost_cents} with nothing bought")
    return violations


def check_allocation_sums(line: CycleLine, allocations: list[Allocation]) -> list[str]:
    """Sum of allocated quantities per side must equal the line counters."""
    violations: list[str] = []
    bought = sum(a.quantity for a in allocations if a.side == FillSide.BUY.value)
    sold = sum(a.quantity for a in allocations if a.side == FillSide.SELL.value)
    if bought != line.units_bought:
        violations.append(
            f"line {line.id}: buy allocations {bought} != units_bought {line.units_bought}"
        )
    if sold != line.units_sold:
        violations.append(
            f"line {line.id}: sell allocations {sold} != units_sold {line.units_sold}"
        )
    return violations


def check_rollover_line(line: CycleLine) -> list[str]:
    """A rollover line arrives fully bought and listed (checked at creation)."""
    if not line.is_rollover:
        return []
    if line.listed_units != line.units_bought or line.planned_units != line.units_bought:
        return [
            f"rollover line {line.id}: planned={line.planned_units} "
            f"bought={line.units_bought} listed={line.listed_units} must be equal"
        ]
    return []


def check_rollover_name(
    participation_id: str, character_name: str, source_character_name: str
) -> list[str]:
    if character_name != source_character_name:
        return [
            f"rollover participation {participation_id}: character_name "
            f"{character_name!r} != source {source_character_name!r}"
        ]
    return []


def audit_lines(lines: list[CycleLine], allocations_by_line: dict[str, list[Allocation]]) -> list[str]:
    violations: list[str] = []
    for line in lines:
        violations.extend(check_line(line))
        violations.extend(check_allocation_sums(line, allocations_by_line.get(line.id, [])))
    for msg in violations:
        logger.error(msg)
    return violations
