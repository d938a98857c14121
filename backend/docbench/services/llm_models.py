"""Completion model catalog services."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from docbench.models.llm_model import LLMModel
from docbench.schemas.llm_model import LLMModelUpsert

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ModelSpec:
    """Everything the orchestrator needs to call and price one model."""

    identifier: str
    provider: str
    name: str
    supports_json_mode: bool = False
    price_in: float = 0.0
    price_out: float = 0.0


def split_model_identifier(identifier: str) -> tuple[str, str]:
    """Split ``provider/name``. Raises ValueError unless there is exactly one slash and both parts are set."""

    parts = identifier.strip().split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(f"Model identifier must look like 'provider/name': {identifier!r}")
    return parts[0], parts[1]


def list_llm_models(db: Session) -> list[LLMModel]:
    stmt = select(LLMModel).order_by(LLMModel.provider.asc(), LLMModel.name.asc())
    return list(db.scalars(stmt).all())


def upsert_llm_model(db: Session, payload: LLMModelUpsert) -> LLMModel:
    """Create or update the catalog row for ``provider/name``."""

    row = db.scalar(
        select(LLMModel).where(LLMModel.provider == payload.provider, LLMModel.name == payload.name)
    )
    if row is None:
        row = LLMModel(provider=payload.provider, name=payload.name)
        db.add(row)
    row.display_name = payload.display_name or f"{payload.provider}/{payload.name}"
    row.supports_json_mode = payload.supports_json_mode
    row.price_in = payload.price_in
    row.price_out = payload.price_out
    db.commit()
    db.refresh(row)
    return row


def resolve_model_specs(db: Session, identifiers: list[str]) -> list[ModelSpec]:
    """Attach catalog pricing and JSON-mode support to each identifier, in order.

    Identifiers missing from the catalog are priced at zero without JSON mode.
    """

    specs: list[ModelSpec] = []
    for identifier in identifiers:
        provider, name = split_model_identifier(identifier)
        row = db.scalar(select(LLMModel).where(LLMModel.provider == provider, LLMModel.name == name))
        if row is None:
            logger.warning("models.catalog_miss identifier=%s", identifier)
            specs.append(ModelSpec(identifier=f"{provider}/{name}", provider=provider, name=name))
            continue
        specs.append(
            ModelSpec(
                identifier=row.identifier,
                provider=row.provider,
                name=row.name,
                supports_json_mode=row.supports_json_mode,
                price_in=row.price_in,
                price_out=row.price_out,
            )
        )
    return specs
