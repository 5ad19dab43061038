# laudo_core/common/unit_of_work.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import structlog
from django.db import transaction

log = structlog.get_logger(__name__)


@contextmanager
def unit_of_work(name: str, **context) -> Iterator[None]:
    """
    Transaction boundary for operations that touch more than one aggregate.

    Everything written inside the block commits together; any exception rolls the
    whole block back and is re-raised unchanged.
    """
    with structlog.contextvars.bound_contextvars(unit_of_work=name):
        try:
            with transaction.atomic():
                yield
        except Exception as exc:
            log.warning("unit_of_work.rolled_back", error=type(exc).__name__, **context)
            raise
        log.debug("unit_of_work.committed", **context)
