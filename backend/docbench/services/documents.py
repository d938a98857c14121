"""Document storage and lookup services."""

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from docbench.models.document import Document
from docbench.schemas.document import DocumentCreate


class DocumentNotFoundError(LookupError):
    """Raised when referenced document ids do not exist."""

    def __init__(self, missing_ids: Iterable[int]) -> None:
        self.missing_ids = sorted(set(missing_ids))
        super().__init__(f"Documents not found: {', '.join(str(i) for i in self.missing_ids)}")


def create_document(db: Session, payload: DocumentCreate) -> Document:
    """Persist a document whose text has already been extracted."""

    document = Document(
        owner=payload.owner,
        filename=payload.filename,
        mime_type=payload.mime_type,
        full_text=payload.text,
        char_count=len(payload.text),
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    return document


def list_documents(db: Session, owner: str | None = None) -> list[Document]:
    """Return documents newest first, optionally for one owner."""

    stmt = select(Document).order_by(Document.created_at.desc(), Document.id.desc())
    if owner:
        stmt = stmt.where(Document.owner == owner)
    return list(db.scalars(stmt).all())


def get_document(db: Session, document_id: int) -> Document | None:
    return db.get(Document, document_id)


def get_documents_in_order(db: Session, document_ids: list[int]) -> list[Document]:
    """Load documents preserving the requested order. Raises when any id is unknown."""

    if not document_ids:
        return []
    rows = db.scalars(select(Document).where(Document.id.in_(document_ids))).all()
    by_id = {row.id: row for row in rows}
    missing = [document_id for document_id in document_ids if document_id not in by_id]
    if missing:
        raise DocumentNotFoundError(missing)
    return [by_id[document_id] for document_id in document_ids]
