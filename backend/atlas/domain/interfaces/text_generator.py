"""
Text Generator Interface
Abstract base class for generative text providers
"""
from abc import ABC, abstractmethod
from typing import Optional


class TextGenerator(ABC):
    """Abstract base class for non-streaming text generation"""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        json_mode: bool = False
    ) -> str:
        """
        Generate a completion for a single prompt.

        Args:
            prompt: User prompt
            system_prompt: Optional system instructions
            temperature: Randomness (0.0 - 2.0)
            max_tokens: Max response length
            json_mode: Ask the provider for a JSON object response

        Returns:
            Completion text
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass
