"""Completion model catalog routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from docbench.db.dependencies import get_db
from docbench.schemas.common import ApiResponse
from docbench.schemas.llm_model import LLMModelRead, LLMModelUpsert
from docbench.services.llm_models import list_llm_models, upsert_llm_model


router = APIRouter(prefix="/models")


@router.get("", response_model=ApiResponse[list[LLMModelRead]])
def get_models(db: Session = Depends(get_db)) -> ApiResponse[list[LLMModelRead]]:
    """List catalog models with pricing."""

    return ApiResponse(data=[LLMModelRead.model_validate(row) for row in list_llm_models(db)])


@router.put("", response_model=ApiResponse[LLMModelRead])
def put_model(
    payload: LLMModelUpsert,
    db: Session = Depends(get_db),
) -> ApiResponse[LLMModelRead]:
    """Create or update one catalog model."""

    return ApiResponse(data=LLMModelRead.model_validate(upsert_llm_model(db, payload)))
