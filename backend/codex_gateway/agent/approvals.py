import enum
from dataclasses import dataclass
from typing import Optional


class ApprovalPolicy(str, enum.Enum):
    SUGGEST = "suggest"  # every command needs confirmation
    AUTO_EDIT = "auto-edit"
    FULL_AUTO = "full-auto"


class ReviewDecision(str, enum.Enum):
    YES = "yes"
    NO_CONTINUE = "no-continue"
    NO_EXIT = "no-exit"
    ALWAYS = "always"


@dataclass(frozen=True)
class CommandConfirmation:
    review: ReviewDecision
    custom_deny_message: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.review in (ReviewDecision.YES, ReviewDecision.ALWAYS)
