"""
Email Sender Interface
Transactional email delivery
"""
from abc import ABC, abstractmethod
from typing import Optional


class EmailSender(ABC):
    """Abstract base class for transactional email providers"""

    @abstractmethod
    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: Optional[str] = None
    ) -> str:
        """
        Send an email.

        Returns:
            Provider message id
        """
        pass
