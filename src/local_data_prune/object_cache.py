"""
Run-scoped memo of object rows.

The cache keeps the mark and sweep traversals close to one read per object:
batched lookups fetch only the ids it has not seen, and single-id lookups that
reach the store are reported as warnings because they mean a caller skipped
the batched path. The cache is never authoritative; dropping it only costs
extra reads.
"""
from typing import Iterable, Protocol, Sequence

from local_data_prune.database_interface import ObjectRow
from local_data_prune.logger import get_logger

logger = get_logger(__name__)


class ObjectStore(Protocol):
    """Reads the cache needs from a stage adapter."""

    def get_object(self, object_id: int) -> ObjectRow | None: ...

    def get_objects(self, object_ids: Sequence[int]) -> list[ObjectRow]: ...

    def get_meta_values(self, object_ids: Sequence[int], meta_key: str) -> dict[int, str]: ...


class ObjectCache:
    """Memoized ``id -> ObjectRow`` lookups over an injected store."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store
        self._objects: dict[int, ObjectRow] = {}
        self._missing: set[int] = set()
        self._meta: dict[tuple[int, str], str | None] = {}
        self.hits = 0
        self.misses = 0
        self.store_reads = 0

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, object_id: object) -> bool:
        return object_id in self._objects

    def get(self, object_id: int) -> ObjectRow | None:
        """Return one object, reading the store on a miss."""
        if object_id in self._objects:
            self.hits += 1
            return self._objects[object_id]
        if object_id in self._missing:
            self.hits += 1
            return None

        self.misses += 1
        self.store_reads += 1
        logger.warning(
            "Uncached single-object read for id %d; a batched lookup missed it",
            object_id,
        )
        obj = self._store.get_object(object_id)
        if obj is None:
            self._missing.add(object_id)
        else:
            self._objects[object_id] = obj
        return obj

    def get_many(self, object_ids: Iterable[int]) -> dict[int, ObjectRow]:
        """
        Return ``id -> ObjectRow`` for every id in *object_ids* that exists.

        Issues at most one batched store read, covering only the ids that are
        neither cached nor already known to be missing.
        """
        wanted = set(object_ids)
        unknown = wanted - self._objects.keys() - self._missing
        self.hits += len(wanted) - len(unknown)

        if unknown:
            self.misses += len(unknown)
            self.store_reads += 1
            for obj in self._store.get_objects(sorted(unknown)):
                self._objects[obj.id] = obj
            self._missing |= unknown - self._objects.keys()

        return {i: self._objects[i] for i in sorted(wanted) if i in self._objects}

    def put(self, obj: ObjectRow) -> None:
        self._objects[obj.id] = obj
        self._missing.discard(obj.id)

    def discard(self, object_ids: Iterable[int]) -> None:
        """Forget rows that were deleted from the store."""
        for object_id in object_ids:
            self._objects.pop(object_id, None)
            self._missing.add(object_id)

    def get_meta(self, objects: Iterable[ObjectRow], meta_key: str) -> dict[int, str]:
        """
        Return ``object_id -> meta_value`` of *meta_key* for *objects*.

        Objects without the key are absent from the result. Lookups are
        memoized per ``(id, key)`` and fetched in one batched read.
        """
        ids = sorted({o.id for o in objects})
        unknown = [i for i in ids if (i, meta_key) not in self._meta]
        if unknown:
            self.store_reads += 1
            found = self._store.get_meta_values(unknown, meta_key)
            for object_id in unknown:
                self._meta[(object_id, meta_key)] = found.get(object_id)

        values: dict[int, str] = {}
        for object_id in ids:
            value = self._meta[(object_id, meta_key)]
            if value is not None:
                values[object_id] = value
        return values

    def clear(self) -> None:
        """Drop everything; the next lookups read the store again."""
        self._objects.clear()
        self._missing.clear()
        self._meta.clear()
