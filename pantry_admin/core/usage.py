"""
Token usage records and summaries.

Usage records are written by the application whenever it calls an AI model.
Older records may lack a model id, so a summary keeps attributed and
unattributed token counts apart.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from pantry_admin.storage.models import Record

MODEL_FIELD = "model"
PROMPT_TOKENS_FIELD = "promptTokens"
COMPLETION_TOKENS_FIELD = "completionTokens"


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.

    Contains exact token counts without estimation or model-specific logic.
    """
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            self.prompt_tokens + other.prompt_tokens,
            self.completion_tokens + other.completion_tokens
        )


NO_USAGE = TokenUsage(0, 0)


@dataclass(frozen=True)
class UsageRecord:
    """One AI request made on behalf of a user."""
    user_id: str
    model_id: Optional[str]
    prompt_tokens: int
    completion_tokens: int

    @classmethod
    def from_record(cls, record: Record) -> "UsageRecord":
        """Parse a stored usage record, reading missing token counts as zero."""
        model = record.get(MODEL_FIELD)
        if not isinstance(model, str) or not model.strip():
            model = None
        return cls(
            user_id=record.user_id or "",
            model_id=model,
            prompt_tokens=_token_count(record.get(PROMPT_TOKENS_FIELD)),
            completion_tokens=_token_count(record.get(COMPLETION_TOKENS_FIELD)),
        )

    @property
    def usage(self) -> TokenUsage:
        return TokenUsage(self.prompt_tokens, self.completion_tokens)


def _token_count(value) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    return 0


@dataclass(frozen=True)
class UsageSummary:
    """Token usage totals for one user.

    ``by_model`` only holds records that named a model; tokens from records
    without one are kept in ``unattributed``. The cost of a summary is never
    stored here; it is recomputed from the current price table on every read.
    """
    request_count: int = 0
    by_model: Dict[str, TokenUsage] = field(default_factory=dict)
    unattributed: TokenUsage = NO_USAGE

    @property
    def prompt_tokens(self) -> int:
        return sum(u.prompt_tokens for u in self.by_model.values()) + self.unattributed.prompt_tokens

    @property
    def completion_tokens(self) -> int:
        return (
            sum(u.completion_tokens for u in self.by_model.values())
            + self.unattributed.completion_tokens
        )

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def attributed_tokens(self) -> int:
        return sum(u.total_tokens for u in self.by_model.values())


def summarize_usage(records: Iterable[UsageRecord]) -> UsageSummary:
    """Fold usage records into a summary."""
    by_model: Dict[str, TokenUsage] = {}
    unattributed = NO_USAGE
    count = 0
    for record in records:
        count += 1
        if record.model_id is None:
            unattributed = unattributed + record.usage
        else:
            by_model[record.model_id] = by_model.get(record.model_id, NO_USAGE) + record.usage
    return UsageSummary(request_count=count, by_model=by_model, unattributed=unattributed)
