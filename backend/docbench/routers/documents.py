"""Document upload and listing routes."""

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from docbench.db.dependencies import get_db
from docbench.schemas.common import ApiResponse
from docbench.schemas.document import DocumentCreate, DocumentRead
from docbench.services.documents import create_document, get_document, list_documents


router = APIRouter(prefix="/documents")


@router.post("", response_model=ApiResponse[DocumentRead], status_code=201)
def upload_document(
    payload: DocumentCreate,
    db: Session = Depends(get_db),
) -> ApiResponse[DocumentRead]:
    """Store a document whose text was extracted upstream."""

    document = create_document(db, payload)
    return ApiResponse(data=DocumentRead.model_validate(document))


@router.get("", response_model=ApiResponse[list[DocumentRead]])
def get_documents(
    owner: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> ApiResponse[list[DocumentRead]]:
    """List stored documents."""

    return ApiResponse(data=[DocumentRead.model_validate(document) for document in list_documents(db, owner)])


@router.get("/{document_id}", response_model=ApiResponse[DocumentRead])
def get_document_detail(
    document_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[DocumentRead]:
    """Return one document's metadata."""

    document = get_document(db, document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return ApiResponse(data=DocumentRead.model_validate(document))
