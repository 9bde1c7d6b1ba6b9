from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from assistant.context_store import ContextStore, format_context_for_prompt
from assistant.gemini_client import GeminiClient, GeminiError

logger = logging.getLogger(__name__)

REDIRECT_REPLY = "I'm FitAI - I help with fitness, nutrition, and wellness! What fitness goal can I help you with?"
FAILURE_REPLY = "Sorry, I couldn't reach the coaching service right now. Please try again in a moment."
NO_CONTEXT_NOTE = "\nNo specific database information found for this query. Provide general fitness/nutrition guidance.\n"

SYSTEM_PROMPT = f"""You are FitAI, a specialized AI fitness and nutrition assistant. You are EXCLUSIVELY focused on helping users with their health and fitness journey.

YOUR EXPERTISE AREAS (ONLY THESE TOPICS):
1. FITNESS & EXERCISE: Workouts, exercises, training programs, form, muscle groups, strength training, cardio
2. NUTRITION & DIET: Food information, calories, macronutrients, meal planning, supplements, weight management
3. WELLNESS & HEALTH: Recovery, sleep, hydration, flexibility, injury prevention, fitness goals
4. FITAI PRODUCT: Our fitness platform, features, database, and how to achieve fitness goals using our system

STRICT RULES - NO EXCEPTIONS:
- You MUST ONLY discuss fitness, nutrition, wellness, and health topics
- If asked about ANYTHING else (politics, current events, entertainment, general technology, weather, etc.), immediately use the redirect response
- Always prioritize database information when available
- Keep responses SHORT and CONCISE (2-3 sentences max unless detailed explanation is specifically requested)
- Be encouraging, motivational, and provide actionable advice
- Focus on the most important points only

MANDATORY REDIRECT for off-topic questions:
"{REDIRECT_REPLY}"

RESPONSE STYLE:
- Keep answers brief and to the point
- Use bullet points for lists when appropriate
- Provide ONE key actionable tip per response
- End with a short engaging question when relevant

"""


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str
    timestamp: str


class FitAIAssistant:
    def __init__(
        self,
        client: GeminiClient,
        context_store: Optional[ContextStore] = None,
        max_messages: int = 50,
    ) -> None:
        self.client = client
        self.context_store = context_store
        self.max_messages = max_messages
        self.history: List[ChatMessage] = []

    def build_prompt(self, message: str, database_context: str) -> str:
        prompt = SYSTEM_PROMPT + (database_context or NO_CONTEXT_NOTE)
        if self.history:
            prompt += "Previous conversation:\n"
            for entry in self.history:
                prompt += f"{entry.role}: {entry.content}\n"
            prompt += "\n"
        return prompt + f"User: {message}\nAssistant:"

    def _database_context(self, message: str) -> str:
        if self.context_store is None:
            return ""
        try:
            return format_context_for_prompt(self.context_store.query_for_context(message))
        except Exception:
            logger.exception("Context lookup crashed; answering without database context")
            return ""

    def chat(self, message: str) -> str:
        message = message.strip()
        if not message:
            raise ValueError("Message is required")

        prompt = self.build_prompt(message, self._database_context(message))
        try:
            reply = self.client.generate_content(prompt)
        except GeminiError as error:
            logger.warning("Chat request failed: %s", error)
            return FAILURE_REPLY

        self._remember("user", message)
        self._remember("assistant", reply)
        return reply

    def _remember(self, role: str, content: str) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        self.history.append(ChatMessage(role, content, timestamp))
        if len(self.history) > self.max_messages:
            self.history = self.history[-self.max_messages :]

    def clear_history(self) -> None:
        self.history = []
