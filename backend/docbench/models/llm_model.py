"""Completion model catalog ORM model."""

from sqlalchemy import Boolean, Float, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from docbench.models.base import Base, CreatedAtMixin, IdMixin


class LLMModel(Base, IdMixin, CreatedAtMixin):
    """Pricing and capability metadata for one `provider/name` model."""

    __tablename__ = "llm_models"
    __table_args__ = (UniqueConstraint("provider", "name", name="uq_llm_models_provider_name"),)

    provider: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    supports_json_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    price_in: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    price_out: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    @property
    def identifier(self) -> str:
        return f"{self.provider}/{self.name}"
