"""
Presence-based reconciliation of a local and a remote collection.

Records match when they share an id, or when they share a natural key
(barcode for products, reference for bills). Matched records are never
compared or overwritten; only records missing on one side move.
"""
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

from database.models import Bill, Product

T = TypeVar("T")


def product_key(product: Product) -> Optional[str]:
    return product.barcode or None


def bill_key(bill: Bill) -> Optional[str]:
    return bill.reference or None


@dataclass
class Reconciliation(Generic[T]):
    to_upload: List[T] = field(default_factory=list)
    to_download: List[T] = field(default_factory=list)
    matched: int = 0

    @property
    def in_sync(self) -> bool:
        return not self.to_upload and not self.to_download


class _Index:
    def __init__(self, records: Sequence, natural_key: Callable[[object], Optional[str]]):
        self.natural_key = natural_key
        self.ids = set()
        self.keys = set()
        for record in records:
            self.add(record)

    def add(self, record):
        self.ids.add(record.id)
        key = self.natural_key(record)
        if key:
            self.keys.add(key)

    def __contains__(self, record) -> bool:
        if record.id in self.ids:
            return True
        key = self.natural_key(record)
        return bool(key) and key in self.keys


def reconcile(local: Sequence[T], remote: Sequence[T], natural_key: Callable[[T], Optional[str]]) -> Reconciliation[T]:
    """
    Compute the symmetric difference of two collections by identity

    Args:
        local: Records in the local cache
        remote: Records in the remote store
        natural_key: Returns the record's natural key, or None when it has none

    Returns:
        Reconciliation: Local-only records to upload, remote-only records to download
    """
    remote_index = _Index(remote, natural_key)
    local_index = _Index(local, natural_key)
    result = Reconciliation()

    for record in local:
        if record in remote_index:
            result.matched += 1
        else:
            result.to_upload.append(record)

    # Index grows while scanning so remote duplicates are downloaded once
    for record in remote:
        if record not in local_index:
            result.to_download.append(record)
            local_index.add(record)

    return result


def merge(local: Sequence[T], downloaded: Sequence[T]) -> List[T]:
    """Union of the local collection and the downloaded records, local order first"""
    return list(local) + list(downloaded)
