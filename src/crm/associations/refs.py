"""Salesperson reference canonicalization.

Firestore documents store salespeople in ``associations.salespeople`` in two
shapes written by different generations of the app:

    ["uid-1", "uid-2"]                                   # bare ids
    [{"id": "uid-1", "name": "Ann", "email": "a@x.io"}]  # object snapshots

Older exports use ``uid`` instead of ``id``. canonicalize_salesperson_ref()
folds all of them into one tagged union so callers never branch on shape.

Exports:
    IdRef, ObjectRef, SalespersonRef: the tagged union.
    canonicalize_salesperson_ref: any stored entry -> ref or None.
    salesperson_refs / salesperson_ids: read refs off an entity document.
    ref_id / entity_ids: id extraction for any association list.
    normalize_salesperson_entries: upgrade bare ids to object snapshots.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

# Fields copied from a user directory into an object snapshot
SNAPSHOT_FIELDS = ("name", "email", "displayName", "firstName", "lastName")


class IdRef(BaseModel):
    """Bare-id reference (legacy array entry)."""

    kind: Literal["id"] = "id"
    id: str


class ObjectRef(BaseModel):
    """Reference carrying a denormalized snapshot of the salesperson."""

    kind: Literal["object"] = "object"
    id: str
    snapshot: dict[str, Any] = Field(default_factory=dict)

    @property
    def name(self) -> str | None:
        return self.snapshot.get("name") or self.snapshot.get("displayName")

    @property
    def email(self) -> str | None:
        return self.snapshot.get("email")


SalespersonRef = Annotated[IdRef | ObjectRef, Field(discriminator="kind")]


def ref_id(entry: Any) -> str | None:
    """Return the id of an association entry (string or object), or None."""
    if isinstance(entry, (IdRef, ObjectRef)):
        return entry.id
    if isinstance(entry, str):
        entry = entry.strip()
        return entry or None
    if isinstance(entry, Mapping):
        value = entry.get("id") or entry.get("uid")
        if isinstance(value, str) and value:
            return value
    return None


def canonicalize_salesperson_ref(entry: Any) -> IdRef | ObjectRef | None:
    """Fold a stored salesperson entry into a SalespersonRef.

    Returns None for entries that carry no usable id (empty strings, objects
    without ``id``/``uid``, numbers, None).
    """
    if isinstance(entry, (IdRef, ObjectRef)):
        return entry
    identifier = ref_id(entry)
    if identifier is None:
        return None
    if isinstance(entry, Mapping):
        snapshot = {k: v for k, v in entry.items() if k not in ("id", "uid")}
        return ObjectRef(id=identifier, snapshot=snapshot)
    return IdRef(id=identifier)


def _association_list(entity: Mapping[str, Any] | None, kind: str) -> list[Any]:
    if not isinstance(entity, Mapping):
        return []
    associations = entity.get("associations")
    if not isinstance(associations, Mapping):
        return []
    entries = associations.get(kind)
    if isinstance(entries, (list, tuple)):
        return list(entries)
    return []


def has_salesperson_associations(entity: Mapping[str, Any] | None) -> bool:
    """True when the entity carries an ``associations.salespeople`` array."""
    if not isinstance(entity, Mapping):
        return False
    associations = entity.get("associations")
    return isinstance(associations, Mapping) and isinstance(
        associations.get("salespeople"), (list, tuple)
    )


def salesperson_refs(entity: Mapping[str, Any] | None) -> list[IdRef | ObjectRef]:
    """Canonical refs from ``associations.salespeople``; unusable entries dropped."""
    refs = []
    for entry in _association_list(entity, "salespeople"):
        ref = canonicalize_salesperson_ref(entry)
        if ref is not None:
            refs.append(ref)
    return refs


def salesperson_ids(entity: Mapping[str, Any] | None) -> list[str]:
    """Unique salesperson ids in stored order."""
    return list(dict.fromkeys(ref.id for ref in salesperson_refs(entity)))


def entity_ids(entries: Iterable[Any] | None) -> list[str]:
    """Unique ids from any association list (companies, contacts, locations)."""
    ids = (ref_id(entry) for entry in entries or ())
    return list(dict.fromkeys(i for i in ids if i))


def associated_ids(entity: Mapping[str, Any] | None, kind: str) -> list[str]:
    """Unique ids from ``associations.<kind>`` on an entity document."""
    return entity_ids(_association_list(entity, kind))


def ref_to_document(ref: IdRef | ObjectRef) -> str | dict[str, Any]:
    """Serialize a ref back into its Firestore array-entry shape."""
    if isinstance(ref, ObjectRef):
        return {"id": ref.id, **ref.snapshot}
    return ref.id


def normalize_salesperson_entries(
    entries: Iterable[Any] | None,
    directory: Mapping[str, Mapping[str, Any]],
) -> list[str | dict[str, Any]]:
    """Upgrade bare-id entries to object snapshots using a uid -> user directory.

    Entries whose id is missing from the directory stay as bare ids. Duplicate
    ids collapse into one entry, preferring an object snapshot over a bare id.
    Unusable entries are dropped.

    Args:
        entries: Stored ``associations.salespeople`` array.
        directory: Mapping of uid to user document (``name``, ``email``, ...).

    Returns:
        Array ready to write back to Firestore.
    """
    merged: dict[str, IdRef | ObjectRef] = {}
    for entry in entries or ():
        ref = canonicalize_salesperson_ref(entry)
        if ref is None:
            continue
        if isinstance(ref, IdRef) and ref.id in directory:
            user = directory[ref.id]
            ref = ObjectRef(
                id=ref.id,
                snapshot={k: user[k] for k in SNAPSHOT_FIELDS if user.get(k)},
            )
        existing = merged.get(ref.id)
        if existing is None or (isinstance(existing, IdRef) and isinstance(ref, ObjectRef)):
            merged[ref.id] = ref
    return [ref_to_document(ref) for ref in merged.values()]
