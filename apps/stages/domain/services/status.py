# apps/stages/domain/services/status.py
from datetime import date, datetime
from functools import lru_cache
from typing import Optional

from dateutil.parser import isoparse

from apps.stages.domain.entities import TaskStatus


def coerce_date(value) -> Optional[date]:
    """
    Zamienia wartość z API (str / date / datetime) na datę kalendarzową.
    Wartość nieczytelna daje None, bez wyjątku.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return isoparse(value.strip()).date()
    except (ValueError, OverflowError):
        return None


@lru_cache(maxsize=4096)
def derive_status(is_completed: bool, start_date: Optional[date],
                  expected_end_date: Optional[date], today: date) -> TaskStatus:
    """
    Status zadania (pierwsza pasująca reguła wygrywa):
    1. ukończone -> COMPLETED (nawet jeśli po terminie)
    2. dziś > planowany koniec -> DELAYED
    3. dziś >= start -> IN_PROGRESS
    4. w przeciwnym razie -> NOT_STARTED

    Brak daty (None) traktujemy jak datę nieskończenie odległą.
    """
    if is_completed:
        return TaskStatus.COMPLETED
    if expected_end_date is not None and today > expected_end_date:
        return TaskStatus.DELAYED
    if start_date is not None and today >= start_date:
        return TaskStatus.IN_PROGRESS
    return TaskStatus.NOT_STARTED


def overdue_days(expected_end_date: Optional[date], today: date) -> int:
    """Liczba dni po terminie (tylko do wyświetlania), 0 gdy nie ma opóźnienia."""
    if expected_end_date is None:
        return 0
    # Daty bez części czasowej: różnica jest całkowitą liczbą dni
    return max(0, (today - expected_end_date).days)


def days_remaining(due_date: Optional[date], today: date) -> Optional[int]:
    """Dni do terminu; wartość ujemna = po terminie."""
    if due_date is None:
        return None
    return (due_date - today).days
