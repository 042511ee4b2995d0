"""
IntentClassifier port — understands what a rider is asking for.

The classifier reads a free-text WhatsApp message and returns structured
data.  The presence ledger then operates on that data.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Literal

Action = Literal[
    "confirmar", "cancelar", "atraso", "status",
    "saldo", "ajuda", "saudacao", "desconhecido",
]

# Tie-break order when a message could match more than one action.
ACTION_PRIORITY: tuple[Action, ...] = (
    "confirmar",
    "cancelar",
    "atraso",
    "status",
    "saldo",
    "ajuda",
    "saudacao",
)


@dataclass
class Intent:
    """Structured output of intent classification — no raw text, only data."""
    action: Action
    days: list[str] = field(default_factory=list)   # day tokens: "seg".."sex", "hoje"
    minutes: int | None = None                      # only for "atraso"
    confidence: float = 0.0                         # 0.0–1.0

    @classmethod
    def unknown(cls) -> "Intent":
        return cls(action="desconhecido")

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "dias": list(self.days),
            "minutos": self.minutes,
            "confidence": self.confidence,
        }


class IntentClassifier(ABC):
    """
    Port: classify a rider message into a structured intent.

    Must be total: every input, including empty or non-text values,
    yields a valid Intent and never raises.
    """

    @abstractmethod
    def classify(self, text: object, today: date | None = None) -> Intent:
        """Classify one message.  `today` defaults to the local date."""
        ...
