"""Intent classification result models.

NO raw text stored beyond what the dispatcher needs to build a prompt.
"""

from dataclasses import dataclass
from enum import Enum


class IntentKind(str, Enum):
    GREETING = "greeting"
    IMAGE_GENERATE = "image_generate"
    IMAGE_MODIFY = "image_modify"
    CREDIT_BALANCE = "credit_balance"
    BUY_CREDITS = "buy_credits"
    FREEFORM_CHAT = "freeform_chat"


@dataclass(frozen=True)
class Intent:
    """Classified purpose of one inbound message.

    `prior_prompt` is only set for IMAGE_MODIFY and holds the refined prompt of
    the previous generation.
    """

    kind: IntentKind
    prior_prompt: str | None = None

    def is_generation(self) -> bool:
        return self.kind in (IntentKind.IMAGE_GENERATE, IntentKind.IMAGE_MODIFY)
