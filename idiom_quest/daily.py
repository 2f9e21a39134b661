import datetime

from .errors import EmptyCatalog


def select_daily_word(catalog_size: int, date: datetime.date) -> int:
    """Index of the word of the day: the day of the month modulo the catalog size.

    The same date and catalog always give the same index, so the word survives
    restarts and changes when the calendar day does.
    """
    if catalog_size <= 0:
        raise EmptyCatalog("cannot pick a daily word from an empty catalog")
    return date.day % catalog_size
