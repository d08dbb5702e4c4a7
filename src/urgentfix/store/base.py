"""
Record Store protocol

The lifecycle core treats persistence as a generic document store keyed
by collection and id. Stores guarantee atomic single-document updates,
including the conditional form used for compare-and-set, and nothing more:
there are no multi-document transactions.
"""

from typing import Any, Protocol

from urgentfix.store.query import Where

Record = dict[str, Any]


class RecordStore(Protocol):
    """Generic persistence used by the bid lifecycle core"""

    def find(self, collection: str, where: Where | None = None) -> list[Record]:
        """Return all documents in `collection` matching `where`, oldest first"""
        ...

    def find_by_id(self, collection: str, record_id: str) -> Record | None:
        """Return the document with `record_id`, or None"""
        ...

    def create(self, collection: str, data: Record) -> Record:
        """
        Insert a document, assigning `id` when absent

        Raises:
            DuplicateRecordError: If the id already exists
            RecordStoreError: On write failure
        """
        ...

    def update(
        self,
        collection: str,
        record_id: str,
        data: Record,
        expected: Where | None = None,
    ) -> Record | None:
        """
        Merge `data` into a document, atomically

        When `expected` is given, the update only applies if the current
        document matches it; otherwise nothing is written and None is
        returned.

        Raises:
            RecordNotFoundError: If the id does not exist
            RecordStoreError: On write failure
        """
        ...


ID_PREFIXES = {
    "bids": "bid_",
    "service-requests": "req_",
    "users": "usr_",
    "notifications": "ntf_",
}


def id_prefix(collection: str) -> str:
    """Id prefix for a collection ("bids" -> "bid_"); unknown collections get none"""
    return ID_PREFIXES.get(collection, "")
