"""
Pipeline run state.

A ``PipelineRun`` is an immutable value handed to each stage and returned
by it. Stages check ``reached`` before doing any work, so calling an entry
point again with the returned run performs no side effect twice.
"""
import enum
from dataclasses import dataclass, replace
from typing import Optional

from .errors import InvalidState, PipelineError
from .themes import REGULAR


class PipelineState(enum.Enum):
    IDLE = 'idle'
    PAID = 'paid'
    TEXT_DONE = 'text_done'
    IMAGE_DONE = 'image_done'
    LINKED = 'linked'
    MINTED = 'minted'
    FAILED = 'failed'


ORDER = [
    PipelineState.IDLE,
    PipelineState.PAID,
    PipelineState.TEXT_DONE,
    PipelineState.IMAGE_DONE,
    PipelineState.LINKED,
    PipelineState.MINTED,
]


@dataclass(frozen=True)
class ZodiacRequest:
    username: str
    zodiac_type: str
    sign: str
    theme: str = REGULAR


@dataclass(frozen=True)
class PipelineRun:
    request: ZodiacRequest
    state: PipelineState = PipelineState.IDLE
    payment_id: Optional[int] = None
    payment_tx_hash: Optional[str] = None
    payment_amount: Optional[int] = None
    fortune: Optional[str] = None
    image_url: Optional[str] = None
    metadata_uri: Optional[str] = None
    link_tx_hash: Optional[str] = None
    token_id: Optional[int] = None
    token_uri: Optional[str] = None
    mint_tx_hash: Optional[str] = None
    cross_link_pending: bool = False
    error: Optional[PipelineError] = None
    resume_state: Optional[PipelineState] = None

    @property
    def failed(self):
        return self.state is PipelineState.FAILED

    def reached(self, state):
        """True when the run has already passed through ``state``."""
        current = self.resume_state if self.failed else self.state
        return ORDER.index(current) >= ORDER.index(state)

    def advance(self, state, **changes):
        if self.failed:
            raise InvalidState(f'Cannot advance a failed run to {state.value}; resume it first')
        if state is PipelineState.FAILED or ORDER.index(state) != ORDER.index(self.state) + 1:
            raise InvalidState(f'Illegal transition {self.state.value} -> {state.value}')
        return replace(self, state=state, **changes)

    def fail(self, error):
        if self.failed:
            return replace(self, error=error)
        return replace(self, state=PipelineState.FAILED, error=error, resume_state=self.state)

    def resume(self):
        if not self.failed:
            return self
        return replace(self, state=self.resume_state, error=None, resume_state=None)
