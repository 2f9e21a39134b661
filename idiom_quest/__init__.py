"""
Idiom Quest

Persistence and scheduling core for learning Chinese idioms: a read-only
idiom corpus, a per-user progress ledger with fixed-interval spaced
repetition, full-text search with recent-search history, and a word of the day.
"""

from . import db
from . import errors
from . import store
from . import catalog
from . import scheduler
from . import daily
from . import progress
from . import search
from . import service

__version__ = "0.1.0"
__all__ = ["db", "errors", "store", "catalog", "scheduler", "daily", "progress", "search", "service"]
