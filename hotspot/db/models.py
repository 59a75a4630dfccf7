"""
Database Models - FreeRADIUS tables the gateway writes to.

The schema is owned by FreeRADIUS (`raddb/mods-config/sql/main/*/schema.sql`);
only the columns the gateway touches are mapped here.
"""

from sqlalchemy import Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class RadReply(Base):
    """
    ORM model for the radreply table.

    One row per reply attribute returned to the NAS for a username.
    """

    __tablename__ = "radreply"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, index=True, default="")
    attribute: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    op: Mapped[str] = mapped_column(String(2), nullable=False, default="=")
    value: Mapped[str] = mapped_column(String(253), nullable=False, default="")
