"""Prompt assembly for automated replies."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from ..conversations.models import Message
from ..tenants.models import AgentSettings, TenantRecord
from .base import ChatMessage


class PromptBuilder:
    """Resolve the persona template and build the chat transcript for a job."""

    _DEFAULT_TEMPLATES: Mapping[str, str] = {
        "general": "You are a helpful assistant for {business}. Be concise and friendly.",
        "support": (
            "You are {name}, a customer support agent for {business}. Empathise, "
            "clarify the issue and give concrete next steps."
        ),
        "sales": (
            "You are {name}, a sales assistant for {business}. Help the customer "
            "find the right product and state prices and availability accurately."
        ),
    }

    _TONES: Mapping[str, str] = {
        "formal": "Use a formal, professional tone.",
        "friendly": "Use a warm, friendly tone.",
        "casual": "Use a relaxed, casual tone.",
    }

    _LENGTHS: Mapping[str, str] = {
        "short": "Keep replies to one or two sentences.",
        "medium": "Keep replies under five sentences.",
        "long": "Replies may be detailed but stay focused on the question.",
    }

    def __init__(self, extra_templates: Mapping[str, str] | None = None):
        self._templates: dict[str, str] = dict(self._DEFAULT_TEMPLATES)
        if extra_templates:
            self._templates.update(extra_templates)

    def resolve(self, settings: AgentSettings) -> str:
        """Return the persona template for the agent's role type."""

        role_type = (settings.role_type or "general").lower()
        return self._templates.get(role_type, self._templates["general"])

    def system_instruction(
        self,
        tenant: TenantRecord,
        settings: AgentSettings,
        context: str,
        *,
        is_first_message: bool,
    ) -> str:
        lines = [
            self.resolve(settings).format(
                name=settings.role_name, business=tenant.business_name
            ),
            self._TONES.get(settings.tone.lower(), self._TONES["friendly"]),
            self._LENGTHS.get(settings.response_length.lower(), self._LENGTHS["medium"]),
            "You may use emojis sparingly." if settings.use_emojis else "Do not use emojis.",
        ]
        greeting = settings.greeting_policy.lower()
        if greeting == "always" or (greeting == "first_message" and is_first_message):
            lines.append("Open with a short greeting.")
        else:
            lines.append("Do not greet the customer; continue the conversation.")
        if settings.forbidden_topics:
            topics = ", ".join(settings.forbidden_topics)
            lines.append(f"Never discuss these topics: {topics}.")
        lines.append(
            "Answer only from the information below. If it does not cover the "
            "question, say you will check with the team. Never invent products, "
            "prices or stock levels."
        )
        return "\n".join(lines) + "\n\n" + context

    def build(
        self,
        tenant: TenantRecord,
        settings: AgentSettings,
        context: str,
        history: Sequence[Message],
        user_text: str,
    ) -> list[ChatMessage]:
        """Return ``[system, *history, user]`` for the generation call."""

        messages = [
            ChatMessage.system(
                self.system_instruction(
                    tenant, settings, context, is_first_message=not history
                )
            )
        ]
        messages.extend(ChatMessage(m.role, m.text) for m in history)
        messages.append(ChatMessage.user(user_text))
        return messages
