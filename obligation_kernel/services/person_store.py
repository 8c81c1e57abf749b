"""
PersonStore -- read contract over the external relationship graph.

Responsibility:
    Answers the two questions the engine asks of the genealogy: who are a
    person's children, and does a person exist.  The graph itself is owned
    elsewhere; this module only reads it (plus two convenience writers on
    the SQL store used by the CLI and tests).

Architecture position:
    Kernel > Services.  InheritanceEngine and LedgerReconciler depend on the
    PersonStore protocol, never on a concrete store.

Invariants enforced:
    - get_children() never raises for an unknown id; it returns [].
    - get_children() returns ids in sorted order so traversal is
      reproducible regardless of storage order.
    - A self edge is rejected (SelfEdgeError).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.orm import Session

from obligation_kernel.exceptions import SelfEdgeError, UnknownPersonError
from obligation_kernel.logging_config import get_logger
from obligation_kernel.models.person import DEFAULT_EDGE_TYPE, Person, RelationshipEdge

logger = get_logger("services.person_store")


@runtime_checkable
class PersonStore(Protocol):
    """Read-only view of the relationship graph."""

    def get_children(self, person_id: str) -> list[str]:
        ...

    def person_exists(self, person_id: str) -> bool:
        ...


class SqlPersonStore:
    """
    PersonStore backed by the ``persons`` and ``relationship_edges`` tables.

    Reads happen in the caller's session, so a distribution sees edges the
    caller added earlier in the same transaction.
    """

    def __init__(self, session: Session, edge_type: str = DEFAULT_EDGE_TYPE):
        self.session = session
        self.edge_type = edge_type

    def get_children(self, person_id: str) -> list[str]:
        rows = self.session.execute(
            select(RelationshipEdge.child_id)
            .where(RelationshipEdge.parent_id == person_id)
            .where(RelationshipEdge.edge_type == self.edge_type)
        ).scalars()
        return sorted(set(rows))

    def person_exists(self, person_id: str) -> bool:
        found = self.session.execute(
            select(Person.id).where(Person.person_id == person_id)
        ).first()
        return found is not None

    def get_person(self, person_id: str) -> Person | None:
        return self.session.execute(
            select(Person).where(Person.person_id == person_id)
        ).scalar_one_or_none()

    def add_person(
        self,
        person_id: str,
        name: str | None = None,
        birth_year: int | None = None,
        death_year: int | None = None,
    ) -> Person:
        """Insert a person, or return the existing row for ``person_id``."""
        existing = self.get_person(person_id)
        if existing is not None:
            return existing

        person = Person(
            person_id=person_id,
            name=name,
            birth_year=birth_year,
            death_year=death_year,
        )
        self.session.add(person)
        self.session.flush()
        logger.debug("person_added", extra={"person_id": person_id})
        return person

    def add_edge(self, parent_id: str, child_id: str) -> RelationshipEdge:
        """
        Insert a parent -> child edge, or return the existing one.

        Raises:
            SelfEdgeError: parent_id == child_id.
            UnknownPersonError: either endpoint is not in ``persons``.
        """
        if parent_id == child_id:
            raise SelfEdgeError(parent_id)
        if not self.person_exists(parent_id):
            raise UnknownPersonError("parent", parent_id)
        if not self.person_exists(child_id):
            raise UnknownPersonError("child", child_id)

        existing = self.session.execute(
            select(RelationshipEdge)
            .where(RelationshipEdge.parent_id == parent_id)
            .where(RelationshipEdge.child_id == child_id)
            .where(RelationshipEdge.edge_type == self.edge_type)
        ).scalar_one_or_none()
        if existing is not None:
            return existing

        edge = RelationshipEdge(
            parent_id=parent_id,
            child_id=child_id,
            edge_type=self.edge_type,
        )
        self.session.add(edge)
        self.session.flush()
        logger.debug(
            "relationship_edge_added",
            extra={"parent_id": parent_id, "child_id": child_id},
        )
        return edge


class MappingPersonStore:
    """
    In-memory PersonStore over a parent -> children mapping.

    A person is known if it appears as a parent, as a child, or in
    ``persons``.
    """

    def __init__(
        self,
        children: Mapping[str, Iterable[str]],
        persons: Iterable[str] = (),
    ):
        self._children = {
            parent: sorted(set(kids)) for parent, kids in children.items()
        }
        for parent, kids in self._children.items():
            if parent in kids:
                raise SelfEdgeError(parent)

        known = set(persons) | set(self._children)
        for kids in self._children.values():
            known.update(kids)
        self._known = frozenset(known)

    def get_children(self, person_id: str) -> list[str]:
        return list(self._children.get(person_id, ()))

    def person_exists(self, person_id: str) -> bool:
        return person_id in self._known
