import uuid
from dataclasses import dataclass, field
from time import time

from live_transcriber.domain.state import SessionState


@dataclass
class Session:
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: SessionState = SessionState.IDLE
    started_at: float = field(default_factory=time)
    ended_at: float | None = None

    def end(self) -> None:
        if self.ended_at is None:
            self.ended_at = time()
