"""Uploaded document ORM model."""

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from docbench.models.base import Base, CreatedAtMixin, IdMixin


class Document(Base, IdMixin, CreatedAtMixin):
    """Source document with its already-extracted plain text."""

    __tablename__ = "documents"

    owner: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    full_text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    char_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
