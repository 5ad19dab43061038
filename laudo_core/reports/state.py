# laudo_core/reports/state.py
from __future__ import annotations

from laudo_core.common.api.exceptions import InvalidStateTransition
from laudo_core.reports.models import Report, ReportStatus

S = ReportStatus

# Legal status moves for a single report row. REDONE and CANCELLED are final for the
# row; a redo continues the chain in a new row.
TRANSITIONS: dict[str, frozenset[str]] = {
    S.DRAFT.value: frozenset({S.PROCESSING.value, S.REDONE.value, S.CANCELLED.value}),
    S.PROCESSING.value: frozenset(
        {
            S.REPORTED.value,
            S.READY_FOR_SIGNATURE.value,
            S.PDF_ERROR.value,
            S.DELIVERY_ERROR.value,
            S.REDONE.value,
            S.CANCELLED.value,
        }
    ),
    S.REPORTED.value: frozenset(
        {
            S.SIGNED.value,
            S.READY_FOR_SIGNATURE.value,
            S.PDF_ERROR.value,
            S.DELIVERY_ERROR.value,
            S.REDONE.value,
            S.CANCELLED.value,
        }
    ),
    S.READY_FOR_SIGNATURE.value: frozenset(
        {
            S.SIGNED.value,
            S.PDF_ERROR.value,
            S.DELIVERY_ERROR.value,
            S.REDONE.value,
            S.CANCELLED.value,
        }
    ),
    S.SIGNED.value: frozenset({S.REDONE.value}),
    S.PDF_ERROR.value: frozenset({S.REDONE.value, S.CANCELLED.value}),
    S.DELIVERY_ERROR.value: frozenset({S.REDONE.value, S.CANCELLED.value}),
    S.REDONE.value: frozenset(),
    S.CANCELLED.value: frozenset(),
}

SIGNABLE_STATUSES = frozenset({S.REPORTED.value, S.READY_FOR_SIGNATURE.value})


def can_transition(current: str, target: str) -> bool:
    return str(target) in TRANSITIONS.get(str(current), frozenset())


def ensure_transition(report: Report, target: str) -> None:
    if not can_transition(report.status, target):
        raise InvalidStateTransition(current=str(report.status), attempted=str(target))


def transition(report: Report, target: str) -> str:
    """
    Move ``report`` to ``target`` in memory; the caller saves. Returns the old status.
    """
    ensure_transition(report, target)
    previous = str(report.status)
    report.status = str(target)
    return previous
