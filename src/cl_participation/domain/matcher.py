"""Participation matching rules — pure functions, no I/O.

A cash event binds to a participation only when exactly one
AWAITING_INVESTMENT participation of the cycle has the same amount (to the
cent) and a compatible character identity. Ambiguity is never auto-resolved.
"""

from src.cl_common.enums import MatchOutcomeStatus
from src.cl_participation.domain.models import CashEvent, MatchOutcome, Participation


def identity_compatible(participation: Participation, event: CashEvent) -> bool:
    """Character ids decide when both are known; otherwise names, case-insensitively.

    An anonymized event (no id, no name) is compatible with anyone.
    """
    if participation.character_id is not None and event.character_id is not None:
        return participation.character_id == event.character_id
    if event.character_name:
        return participation.character_name.casefold() == event.character_name.strip().casefold()
    return True


def decide_match(event: CashEvent, amount_candidates: list[Participation]) -> MatchOutcome:
    """Pick the participation for an unbound event among same-amount candidates."""
    ids = [p.id for p in amount_candidates]
    if not amount_candidates:
        return MatchOutcome(
            ref_id=event.ref_id,
            status=MatchOutcomeStatus.UNMATCHED.value,
            reason="no AWAITING_INVESTMENT participation with this amount",
        )
    if len(amount_candidates) > 1:
        return MatchOutcome(
            ref_id=event.ref_id,
            status=MatchOutcomeStatus.AMBIGUOUS.value,
            candidate_ids=ids,
            reason=f"{len(ids)} participations share this amount",
        )
    candidate = amount_candidates[0]
    if not identity_compatible(candidate, event):
        return MatchOutcome(
            ref_id=event.ref_id,
            status=MatchOutcomeStatus.INCOMPATIBLE.value,
            candidate_ids=ids,
            reason="character identity does not match",
        )
    return MatchOutcome(
        ref_id=event.ref_id,
        status=MatchOutcomeStatus.MATCHED.value,
        participation_id=candidate.id,
        candidate_ids=ids,
    )
