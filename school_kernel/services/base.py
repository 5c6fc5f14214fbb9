"""
Common ground for the services that write ledger and promotion rows.

Services flush and never commit.  A payment with its receipt and
carry-forward rows, or a promotion batch followed by the year roll-over,
lands in whatever transaction the caller opened (``session_scope()``, a
request handler, the test harness) and commits or rolls back as one.
"""

from abc import ABC

from sqlalchemy.orm import Session

from school_kernel.db.base import Base
from school_kernel.exceptions import SchoolNotFoundError
from school_kernel.models.school import School


class BaseService(ABC):

    def __init__(self, session: Session):
        self.session = session

    def _require_school(self, school_id) -> School:
        school = self.session.get(School, school_id)
        if school is None:
            raise SchoolNotFoundError(str(school_id))
        return school

    def _persist(self, *rows: Base) -> None:
        """Add new rows and flush so their ids and constraints are checked now."""
        self.session.add_all(rows)
        self.session.flush()
