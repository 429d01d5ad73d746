"""
Groq Text Generator
Single-shot completions on Groq for dossiers, ranking and call analysis
"""
import os
from typing import Optional

from groq import AsyncGroq

from atlas.domain.interfaces.text_generator import TextGenerator


class GroqTextGenerator(TextGenerator):
    """
    Groq chat completions, non-streaming.

    Lower temperatures (0.1-0.3) are used by callers that expect JSON.
    """

    def __init__(self, api_key: Optional[str] = None, model: str = "llama-3.3-70b-versatile"):
        api_key = api_key or os.getenv("GROQ_API_KEY")
        if not api_key:
            raise ValueError("Groq API key not found in config or environment")
        self._client = AsyncGroq(api_key=api_key)
        self._model = model

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        json_mode: bool = False
    ) -> str:
        if not 0.0 <= temperature <= 2.0:
            raise ValueError(f"Temperature must be between 0.0 and 2.0, got {temperature}")

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
        except Exception as e:
            raise RuntimeError(f"Groq completion failed: {str(e)}")

        return completion.choices[0].message.content or ""

    @property
    def name(self) -> str:
        return "groq"
