from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OPENROUTER = "openrouter"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: Any) -> "Provider | None":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: Literal["system", "user", "assistant", "data"]
    content: str
    id: Optional[str] = None


class ModelConfig(BaseModel):
    """A fully resolved backend configuration, ready for dispatch."""

    model_config = ConfigDict(
        populate_by_name=True, frozen=True, protected_namespaces=()
    )

    id: str = ""
    name: str = ""
    provider: Provider
    api_key: str = Field(
        validation_alias=AliasChoices("apiKey", "api_key"), repr=False
    )
    base_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("baseUrl", "base_url")
    )
    model_id: str = Field(validation_alias=AliasChoices("modelId", "model_id"))


class ModelConfigOverride(BaseModel):
    """Client-supplied ``modelConfig``; any field may be missing."""

    model_config = ConfigDict(
        populate_by_name=True, extra="ignore", protected_namespaces=()
    )

    id: Optional[str] = None
    name: Optional[str] = None
    provider: Optional[str] = None
    api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("apiKey", "api_key"), repr=False
    )
    base_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("baseUrl", "base_url")
    )
    model_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("modelId", "model_id")
    )


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    messages: List[ChatMessage]
    config: Optional[ModelConfigOverride] = Field(
        default=None, validation_alias=AliasChoices("modelConfig", "config")
    )
    enable_web_search: Optional[bool] = Field(
        default=False,
        validation_alias=AliasChoices("enableWebSearch", "enable_web_search"),
    )


class ProbeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    config: Optional[ModelConfigOverride] = Field(
        default=None, validation_alias=AliasChoices("modelConfig", "config")
    )


class ProbeResult(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    status_code: int = 200
    model: str
    content: str | None = None
