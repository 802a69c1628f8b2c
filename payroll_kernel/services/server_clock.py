"""
ServerClock -- the trusted clock read from the database server.

The payroll period must not follow the device clock of whichever host
happens to activate the core.  ``ServerClock`` asks the database for
``CURRENT_TIMESTAMP`` on every call, so every controller sharing the
ledger sees the same period boundary.
"""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from payroll_kernel.domain.clock import Clock, as_utc
from payroll_kernel.exceptions import ClockUnavailableError
from payroll_kernel.logging_config import get_logger

logger = get_logger("services.server_clock")


class ServerClock(Clock):
    """
    Clock backed by the database server's current time.

    Guarantees:
        - Returned datetimes are timezone-aware UTC.  Backends that return
          naive timestamps (SQLite) are read as UTC.

    Raises:
        ClockUnavailableError: If the server cannot be queried.
    """

    def __init__(self, session: Session):
        self._session = session

    def now(self) -> datetime:
        try:
            value = self._session.execute(select(func.current_timestamp())).scalar_one()
        except SQLAlchemyError as exc:
            logger.error("server_clock_unavailable", extra={"error": str(exc)})
            raise ClockUnavailableError(str(exc)) from exc
        if not isinstance(value, datetime):
            raise ClockUnavailableError(f"unexpected server time value {value!r}")
        return as_utc(value)

    def now_utc(self) -> datetime:
        return self.now()
