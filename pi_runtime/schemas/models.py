"""Model Descriptor Schema - static metadata about one model of one provider."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pi_runtime.core.domain_types import ApiKind, InputModality, require_identifier
from pi_runtime.schemas.usage import TokenCost


class ModelDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str
    id: str
    name: str = ""
    api: ApiKind = ApiKind.OPENAI_COMPLETIONS
    context_window: int = Field(default=0, ge=0)
    max_output_tokens: int = Field(default=0, ge=0)
    supports_streaming: bool = True
    supports_tools: bool = True
    input_modalities: tuple[InputModality, ...] = (InputModality.TEXT,)
    reasoning: bool = False
    base_url: str | None = None
    pricing: TokenCost | None = None

    @field_validator("provider", "id")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        return require_identifier(v, "provider/model id")

    @property
    def key(self) -> tuple[str, str]:
        return (self.provider, self.id)
