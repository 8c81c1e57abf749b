"""
Module: obligation_kernel.models.person
Responsibility: ORM persistence for the relationship graph the engine reads:
    people (opaque external ids) and directed parent -> child edges.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - person_id is globally unique (uq_person_id).
    - (parent_id, child_id, edge_type) is unique (uq_relationship_edge).
    - Self edges are rejected by SqlPersonStore before insert.

Non-goals:
    - The graph is owned by an external system.  These tables only back
      SqlPersonStore; nothing here verifies genealogy or prevents cycles.
"""

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from obligation_kernel.db.base import TimestampedBase

DEFAULT_EDGE_TYPE = "parent-child"


class Person(TimestampedBase):
    """A person known to the relationship graph."""

    __tablename__ = "persons"

    __table_args__ = (
        UniqueConstraint("person_id", name="uq_person_id"),
    )

    # Opaque identifier assigned by the owning system
    person_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    birth_year: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    death_year: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Person {self.person_id}: {self.name}>"


class RelationshipEdge(TimestampedBase):
    """
    Directed parent -> child edge.

    Guarantees:
        - At most one edge per (parent_id, child_id, edge_type).
    """

    __tablename__ = "relationship_edges"

    __table_args__ = (
        UniqueConstraint(
            "parent_id",
            "child_id",
            "edge_type",
            name="uq_relationship_edge",
        ),
        Index("idx_edge_parent", "parent_id", "edge_type"),
        Index("idx_edge_child", "child_id"),
    )

    parent_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("persons.person_id"),
        nullable=False,
    )

    child_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("persons.person_id"),
        nullable=False,
    )

    edge_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=DEFAULT_EDGE_TYPE,
    )

    def __repr__(self) -> str:
        return f"<RelationshipEdge {self.parent_id} -> {self.child_id} ({self.edge_type})>"
