"""
Context Assembly
================

Assembles context for the completion request from several sources:
- Retrieved medical knowledge (RAG)
- The user's resolved location (a place name, never coordinates)
- Conversation history from the chat transport
- Tool definitions

The context assembler is responsible for:
1. Running the independent lookups (knowledge, location) concurrently
2. Respecting the token budget
3. Formatting everything into the message list

Token Budget:
    The request has a fixed budget (28k tokens by default) split between:
    - System prompt (~2000 tokens reserved)
    - Retrieved knowledge (whatever was retrieved, capped at 3000)
    - The current message (~500 tokens reserved)
    - Conversation history (everything that is left)
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Collection

from medcompanion.agent.budget import Budget, estimate_tokens
from medcompanion.agent.history import HistoryAssembler, Turn
from medcompanion.chat.envelope import Envelope, SUPPORTED_LOCALES
from medcompanion.utils.logger import Logger

if TYPE_CHECKING:
    from medcompanion.chat.location import LocationResolver
    from medcompanion.chat.transport import ChatTransport
    from medcompanion.rag import KnowledgeRetriever

logger = Logger("Context")

LOCALE_NAMES = {
    "en-US": "English", "ta-IN": "Tamil", "hi-IN": "Hindi", "es-ES": "Spanish",
    "fr-FR": "French", "de-DE": "German", "it-IT": "Italian", "pt-PT": "Portuguese",
    "ru-RU": "Russian", "ja-JP": "Japanese", "ko-KR": "Korean", "zh-CN": "Chinese",
    "ar-SA": "Arabic", "bn-IN": "Bengali", "te-IN": "Telugu", "mr-IN": "Marathi",
    "ml-IN": "Malayalam", "kn-IN": "Kannada", "gu-IN": "Gujarati",
}


@dataclass
class AssembledContext:
    """
    The fully assembled context for one turn.

    Attributes:
        system_message: The system prompt with date, location and knowledge
        history: Prior turns, oldest first
        current: The user's new message
        tools: Tool definitions in function-calling format
        knowledge: The retrieved knowledge block ("" if none)
        location_name: Resolved place name, None when no location was sent
        locale: The user's locale tag, if the envelope carried one
    """
    system_message: str
    history: list[Turn]
    current: Turn
    tools: list[dict] = field(default_factory=list)
    knowledge: str = ""
    location_name: str | None = None
    locale: str | None = None

    def to_openai_messages(self) -> list[dict]:
        """
        Format as messages for the chat completions API.

        Returns:
            System prompt, history, then the current user message
        """
        result = [{"role": "system", "content": self.system_message}]
        result.extend(turn.to_openai_message() for turn in self.history)
        result.append(self.current.to_openai_message())
        return result


def drop_duplicate_current(history: list[Turn], current_text: str) -> list[Turn]:
    """
    Remove the inbound message from history when the transport already holds it.

    Only the newest turn is checked, and only if it is a user turn with the
    same content.
    """
    if history and history[-1].role == "user" and history[-1].content == current_text:
        return history[:-1]
    return history


class ContextAssembler:
    """
    Assembles context for completion requests.

    The assembler coordinates:
    - Knowledge retrieval and location resolution (concurrently)
    - Budgeting and history selection
    - System prompt generation

    Example:
        assembler = ContextAssembler(retriever, resolver, budget, HistoryAssembler())

        context = await assembler.assemble(transport, envelope)

        stream = await client.chat.completions.create(
            messages=context.to_openai_messages(),
            tools=context.tools,
            stream=True
        )
    """

    BASE_SYSTEM_PROMPT = """You are an empathetic AI Medical Companion designed to provide medical guidance and mental health support. You are a caring, compassionate, and knowledgeable assistant who treats every user with dignity and respect.

CURRENT CONTEXT:
- Date: {date}
- Time: {time}
- User Location: {location}

CONVERSATION CONTEXT:
- You have access to the conversation history
- Reference previous messages when relevant to provide continuity
- Remember symptoms, concerns, or situations mentioned earlier
- If the user mentions "it" or "that", use the history to understand what they mean

AVAILABLE TOOLS:
1. tool_search - finding nearby doctors, hospitals, clinics or pharmacies; latest health guidelines; medication information; recent research
2. tool_alert - ONLY when the user expresses clear suicidal ideation or intent to harm themselves, describes active self-harm or a life-threatening situation, or mentions specific plans to end their life

DO's:
- Use the location name provided above when discussing the user's location
- Be warm, empathetic and non-judgmental
- Provide evidence-based medical information and explain your reasoning
- Encourage professional medical help when appropriate
- Detect the language of the user's message and respond in the SAME language
- Use short paragraphs, bullet points and line breaks for readability
- When using search results, summarize and contextualize the findings

DON'Ts:
- NEVER mention coordinates, latitude, longitude or exact GPS data
- NEVER guess the location yourself; ONLY use the location name provided above
- Never diagnose medical conditions definitively
- Never prescribe medications or specific dosages
- Never be dismissive of mental health concerns
- Never use tables or complex markdown
- Never ignore signs of crisis or suicidal ideation

MENTAL HEALTH CRISIS HANDLING:
If you detect suicidal ideation:
1. Call tool_alert immediately
2. Express immediate concern and care
3. Provide crisis helpline numbers
4. Encourage them not to act on thoughts

{knowledge}

{language}

RESPONSE FORMAT:
You MUST return your response ONLY in this exact JSON string format:
{{"lang": "LANGUAGE_CODE", "text": "YOUR_RESPONSE_HERE"}}

SUPPORTED LANGUAGE CODES:
{locales}

Remember: You are a companion, not just a medical database. Show empathy, care, and genuine concern for the user's wellbeing.
"""

    def __init__(
        self,
        retriever: "KnowledgeRetriever",
        resolver: "LocationResolver",
        budget: Budget,
        history: HistoryAssembler,
        min_history_entries: int = 3,
        tools: list[dict] | None = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize the context assembler.

        Args:
            retriever: Knowledge retriever for the medical knowledge base
            resolver: Reverse geocoder for client coordinates
            budget: Token budget split
            history: History assembler
            min_history_entries: Newest history turns kept regardless of budget
            tools: Tool definitions offered to the model
            clock: Source of the current local time (for the prompt)
        """
        self.retriever = retriever
        self.resolver = resolver
        self.budget = budget
        self.history = history
        self.min_history_entries = min_history_entries
        self.tools = tools or []
        self.clock = clock

    async def _resolve_location(self, envelope: Envelope) -> str | None:
        if envelope.location is None:
            return None
        return await self.resolver.resolve(envelope.location.lat, envelope.location.long)

    async def assemble(
        self,
        transport: "ChatTransport",
        envelope: Envelope,
        exclude_ids: Collection[str] = ()
    ) -> AssembledContext:
        """
        Assemble full context for a completion request.

        Args:
            transport: The channel the message arrived on
            envelope: The decoded inbound message
            exclude_ids: Transport messages to leave out of history

        Returns:
            AssembledContext with system message, history and current turn
        """
        log = logger.bind(channel=transport.channel_id)

        # 1. Knowledge and location are independent
        knowledge, location_name = await asyncio.gather(
            self.retriever.retrieve(envelope.text),
            self._resolve_location(envelope),
        )
        retrieved_tokens = estimate_tokens(knowledge)

        # 2. Whatever the knowledge did not use goes to history
        allowance = self.budget.history_allowance(retrieved_tokens)
        history = await self.history.assemble(
            transport, allowance, self.min_history_entries, exclude_ids
        )
        history = drop_duplicate_current(history, envelope.text)

        # 3. System prompt
        system_message = self._build_system_message(
            knowledge=knowledge,
            location_name=location_name,
            locale=envelope.locale,
        )

        log.debug(
            "Context assembled",
            {
                "knowledge_tokens": retrieved_tokens,
                "history_allowance": allowance,
                "history_turns": len(history),
                "location": location_name is not None,
            }
        )

        return AssembledContext(
            system_message=system_message,
            history=history,
            current=Turn(role="user", content=envelope.text),
            tools=self.tools,
            knowledge=knowledge,
            location_name=location_name,
            locale=envelope.locale,
        )

    def _build_system_message(
        self,
        knowledge: str,
        location_name: str | None,
        locale: str | None
    ) -> str:
        """Build the system message with all context."""
        now = self.clock()

        knowledge_section = ""
        if knowledge:
            knowledge_section = (
                "RELEVANT MEDICAL KNOWLEDGE:\n"
                "Use the following reference material when it applies to the question.\n\n"
                f"{knowledge}"
            )

        language_section = ""
        if locale:
            language_section = (
                f"PREFERRED LANGUAGE: The user's device is set to {locale} "
                f"({LOCALE_NAMES.get(locale, locale)}). Use it unless the user writes in another language."
            )

        locales = "\n".join(f"- {code} ({LOCALE_NAMES[code]})" for code in SUPPORTED_LOCALES)

        system_message = self.BASE_SYSTEM_PROMPT.format(
            date=now.strftime("%B %d, %Y"),
            time=now.strftime("%I:%M %p"),
            location=location_name or "Not available",
            knowledge=knowledge_section,
            language=language_section,
            locales=locales,
        )

        # Collapse the blank lines left by empty sections
        while "\n\n\n" in system_message:
            system_message = system_message.replace("\n\n\n", "\n\n")

        return system_message.strip()
