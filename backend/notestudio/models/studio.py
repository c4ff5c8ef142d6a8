"""
NoteStudio Backend — Studio SQLAlchemy Models
===============================================

What:  ORM models for the `projects`, `versions` and `drafts` tables.
Who:   SqlProjectStore for CRUD, Alembic for schema management.

Table Design Rationale:
    - String primary keys: ids are minted by the application
      ("project-<ms>", "v-<ms>-<rand>", "temp-v-<idx>-<ms>" before save),
      so the database never generates them.
    - timestamp: epoch milliseconds (BIGINT), the unit clients send and sort by.
    - tags: JSON array; portable across PostgreSQL and SQLite.
    - versions.position: keeps the order in which versions were saved, since
      the store rewrites a project's version set as a whole.
"""

from typing import List, Optional

from sqlalchemy import JSON, BigInteger, Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from notestudio.database import Base


class Project(Base):
    """A persisted studio project: the original note plus its generated versions."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    original_note: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    timestamp: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Last modification time (epoch milliseconds)",
    )
    main_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    versions: Mapped[List["Version"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Version.position",
        lazy="selectin",
    )

    # Projects are always listed newest first
    __table_args__ = (
        Index("idx_projects_timestamp", timestamp.desc()),
    )

    def __repr__(self) -> str:
        return f"<Project(id='{self.id}', versions={len(self.versions)})>"


class Version(Base):
    """One generated rewrite belonging to a project."""

    __tablename__ = "versions"

    # Version ids are unique per project, not globally: a project saved as a
    # copy of another keeps the same version ids.
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("projects.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    image_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # standard | detailed | story | analysis | minimalist
    style: Mapped[str] = mapped_column(String(32), nullable=False, default="standard")
    is_recommended: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    project: Mapped[Project] = relationship(back_populates="versions")

    def __repr__(self) -> str:
        return f"<Version(id='{self.id}', project_id='{self.project_id}', style='{self.style}')>"


class Draft(Base):
    """An autosaved snapshot of free-text input."""

    __tablename__ = "drafts"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_drafts_timestamp", timestamp.desc()),
    )

    def __repr__(self) -> str:
        return f"<Draft(id='{self.id}', timestamp={self.timestamp})>"
