"""
Module: school_kernel.selectors.base
Responsibility: Shared plumbing for the read-only selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/.  MUST NOT import from services.

Selectors never add, delete, flush or commit.  They hand back frozen DTOs
(via each model's ``to_dto()``), not ORM instances, and report absence as
``None`` or an empty list; whether that is a NotFound error is the
calling service's decision.
"""

from collections.abc import Callable
from typing import Any

from sqlalchemy import Select
from sqlalchemy.orm import Session

from school_kernel.db.base import Base


class BaseSelector:
    def __init__(self, session: Session):
        self.session = session

    def _dto_by_id(self, model: type[Base], row_id) -> Any | None:
        row = self.session.get(model, row_id)
        return row.to_dto() if row is not None else None

    def _dto_or_none(self, stmt: Select) -> Any | None:
        row = self.session.execute(stmt).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def _sorted_dtos(self, stmt: Select, key: Callable[[Any], Any]) -> list:
        """All matching rows as DTOs, ordered in Python by ``key``."""
        rows = self.session.execute(stmt).scalars().all()
        return sorted((row.to_dto() for row in rows), key=key)
