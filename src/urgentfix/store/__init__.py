"""
Record Store - generic document persistence for the bid lifecycle core

find / find_by_id / create / update keyed by collection and id, with
structured filters and per-document compare-and-set.
"""

from urgentfix.store.base import Record, RecordStore, id_prefix
from urgentfix.store.memory import InMemoryRecordStore
from urgentfix.store.query import InvalidQueryError, Where, matches
from urgentfix.store.sqlite import SQLiteRecordStore

__all__ = [
    "Record",
    "RecordStore",
    "Where",
    "id_prefix",
    "matches",
    "InvalidQueryError",
    "InMemoryRecordStore",
    "SQLiteRecordStore",
]
