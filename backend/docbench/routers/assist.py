"""Prompt optimizer and schema generator routes."""

from fastapi import APIRouter, Depends, HTTPException

from docbench.completion.client import (
    CompletionClient,
    CompletionConfigError,
    CompletionError,
    get_default_completion_client,
)
from docbench.config import get_settings
from docbench.schemas.assist import (
    PromptOptimizeRequest,
    PromptOptimizeResult,
    SchemaGenerateRequest,
    SchemaGenerateResult,
)
from docbench.schemas.common import ApiResponse
from docbench.services.prompt_assist import (
    PromptAssistError,
    PromptAssistValidationError,
    generate_json_schema,
    optimize_prompt,
)


router = APIRouter()


def get_optimizer_client() -> CompletionClient:
    settings = get_settings()
    return _configured_client(settings.prompt_optimizer_temperature, settings.assist_max_tokens)


def get_schema_client() -> CompletionClient:
    settings = get_settings()
    return _configured_client(settings.schema_generator_temperature, settings.assist_max_tokens)


@router.post("/prompts/optimize", response_model=ApiResponse[PromptOptimizeResult])
def post_optimize_prompt(
    payload: PromptOptimizeRequest,
    client: CompletionClient = Depends(get_optimizer_client),
) -> ApiResponse[PromptOptimizeResult]:
    """Expand a short extraction request into a detailed extraction prompt."""

    model = get_settings().assist_model
    try:
        optimized = optimize_prompt(client, model, payload.user_prompt, payload.output_format)
    except PromptAssistValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (CompletionError, PromptAssistError) as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return ApiResponse(data=PromptOptimizeResult(optimized_prompt=optimized, model=model))


@router.post("/schemas/generate", response_model=ApiResponse[SchemaGenerateResult])
def post_generate_schema(
    payload: SchemaGenerateRequest,
    client: CompletionClient = Depends(get_schema_client),
) -> ApiResponse[SchemaGenerateResult]:
    """Generate a draft-07 validation schema from the extraction prompts."""

    model = get_settings().assist_model
    try:
        schema = generate_json_schema(
            client,
            model,
            payload.user_prompt,
            payload.optimized_prompt,
            payload.output_format,
        )
    except PromptAssistValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (CompletionError, PromptAssistError) as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return ApiResponse(data=SchemaGenerateResult(validation_schema=schema, model=model))


def _configured_client(temperature: float, max_tokens: int) -> CompletionClient:
    try:
        return get_default_completion_client(temperature=temperature, max_tokens=max_tokens)
    except CompletionConfigError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
