"""Exceptions raised by the idiom store."""

from __future__ import annotations


class IdiomStoreError(Exception):
    """Base class for every error the store raises."""


class StoreOpenError(IdiomStoreError):
    """The reference dataset is missing, unreadable or malformed.

    Fatal: without the reference catalog there is nothing to learn.
    """


class StoreCorruption(IdiomStoreError):
    """The writable progress dataset cannot be decoded or migrated."""


class ReadOnlyViolation(IdiomStoreError):
    """Something tried to write to the reference dataset."""


class UnknownWord(IdiomStoreError, LookupError):
    def __init__(self, word: str) -> None:
        super().__init__(f"'{word}' is not in the reference catalog")
        self.word = word


class NotLearned(IdiomStoreError):
    def __init__(self, word: str) -> None:
        super().__init__(f"'{word}' has not been learned, so it cannot be reviewed")
        self.word = word


class EmptyCatalog(IdiomStoreError, ValueError):
    """The daily selector was asked to pick from zero items."""
