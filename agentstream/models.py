# agentstream/models.py
from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_LOCALE = "zh-CN"


class WireModel(BaseModel):
    """Accepts camelCase or snake_case input; always dumps snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=False)


class TimeFilter(WireModel):
    start_ts: int | None = None
    end_ts: int | None = None


class OwnerInfo(WireModel):
    id: int = Field(
        default=0, validation_alias=AliasChoices("id", "platformId", "platform_id")
    )
    name: str = Field(
        default="",
        validation_alias=AliasChoices("name", "displayName", "display_name"),
    )
    avatar_url: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> str:
        return "" if value is None else str(value)


class PromptConfig(WireModel):
    role_definition: str = ""
    response_rules: str = ""


class AgentContext(WireModel):
    """Analysis scope sent with an agent run."""
    session_id: str = ""
    time_filter: TimeFilter | None = None
    max_messages_limit: int | None = None
    owner_info: OwnerInfo | None = None
    locale: str | None = None

    @field_validator("session_id", mode="before")
    @classmethod
    def _coerce_session_id(cls, value: Any) -> str:
        return "" if value is None else str(value)


class AgentRunRequest(WireModel):
    """
    Body of a streamed agent run.

    Locale falls back to the context locale, then to the default locale.
    """
    user_message: str
    context: AgentContext = Field(default_factory=AgentContext)
    history_messages: list[Any] = Field(default_factory=list)
    chat_type: str = "group"
    prompt_config: PromptConfig | None = None
    locale: str = DEFAULT_LOCALE

    @classmethod
    def build(
        cls,
        user_message: str,
        context: AgentContext | dict[str, Any] | None = None,
        *,
        history_messages: list[Any] | None = None,
        chat_type: str | None = None,
        prompt_config: PromptConfig | dict[str, Any] | None = None,
        locale: str | None = None,
    ) -> AgentRunRequest:
        if not isinstance(context, AgentContext):
            context = AgentContext.model_validate(context or {})
        if isinstance(prompt_config, dict):
            prompt_config = PromptConfig.model_validate(prompt_config)

        # An explicit locale also fills the context when it has none
        if context.locale is None and locale:
            context = context.model_copy(update={"locale": locale})

        return cls(
            user_message=user_message,
            context=context,
            history_messages=list(history_messages or []),
            chat_type=chat_type or "group",
            prompt_config=prompt_config,
            locale=locale or context.locale or DEFAULT_LOCALE,
        )


class ChatStreamRequest(WireModel):
    """Body of a streamed chat completion."""
    messages: list[dict[str, Any]]
    options: dict[str, Any] = Field(default_factory=dict)
