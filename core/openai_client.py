# core/openai_client.py
"""
OpenAI API client wrapper.

Handles:
- Intent analysis (should a request go to a specific module?)
- General-purpose replies with recent conversation history
"""
from openai import OpenAI
import json
from typing import Dict, List, Optional

DEFAULT_MODEL = "gpt-5-nano"

INTENT_SYSTEM_PROMPT = """You are an intent analyzer for a personal assistant.
The assistant has these specialised modules:
{catalog}

Decide whether the user's input should be handled by one of them.
Respond ONLY with a JSON object in this exact format:
{{
  "should_route_to_specific_module": true/false,
  "target_module": "<module id>" or "general",
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation"
}}"""

ASSISTANT_SYSTEM_PROMPT = (
    "You are a helpful personal AI assistant. Act as a friendly, conversational "
    "assistant for general queries and greetings. Keep responses short and "
    "conversational unless detailed information is requested. If asked about "
    "weather, current events or other real-time information, explain that you "
    "may not have the most current data. When the user mentions tasks one of "
    "the available modules covers, suggest the matching command."
)


class OpenAIClient:
    """Wrapper for OpenAI API"""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL):
        self.client = OpenAI(api_key=api_key)
        self.model = model

    @staticmethod
    def _clean_json_text(text: str) -> str:
        # Remove common fenced code wrappers
        return text.replace("```json", "").replace("```", "").strip()

    def analyze_intent(self, text: str, modules: List[Dict]) -> Dict:
        """
        Classify whether input belongs to one of the given modules.

        Args:
            text: Raw user input
            modules: [{"id", "description", "keywords"}] for routable modules

        Returns:
            {"should_route_to_specific_module", "target_module", "confidence",
             "reasoning"} or {"error": ...} on any failure
        """
        catalog = "\n".join(
            f"- {m['id']}: {m.get('description', '')} (keywords: {', '.join(m.get('keywords', [])[:8])})"
            for m in modules
        ) or "- none"

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": INTENT_SYSTEM_PROMPT.format(catalog=catalog)},
                    {"role": "user", "content": text}
                ],
                max_completion_tokens=1000
            )

            choice = response.choices[0]
            content = (choice.message.content or "").strip()
            if not content:
                return {
                    "error": "empty_completion",
                    "finish_reason": getattr(choice, "finish_reason", None)
                }

            result = json.loads(self._clean_json_text(content))
            if not isinstance(result, dict):
                return {"error": "unexpected_payload"}
            return result

        except json.JSONDecodeError as e:
            return {"error": "json_parse_failed", "details": str(e)}
        except Exception as e:
            return {"error": str(e)}

    def generate_reply(
        self,
        text: str,
        history: Optional[List[Dict]] = None,
        system_prompt: str = ""
    ) -> str:
        """
        Answer a general query.

        Args:
            text: Raw user input
            history: Prior turns as [{"role": "user"|"assistant", "content": str}]
            system_prompt: Overrides the default assistant prompt

        Returns:
            Reply text (may be empty)

        Raises:
            openai.OpenAIError on API failure
        """
        messages = [{"role": "system", "content": system_prompt or ASSISTANT_SYSTEM_PROMPT}]
        messages.extend(history or [])
        messages.append({"role": "user", "content": text})

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_completion_tokens=1000
        )
        return (response.choices[0].message.content or "").strip()
