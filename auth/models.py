from __future__ import annotations

import enum
import time
from dataclasses import dataclass

from auth.oauth2 import generate_code_challenge, generate_code_verifier, generate_state


class LoginState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    COMPLETE = "complete"
    DENIED = "denied"
    STATE_MISMATCH = "state_mismatch"
    TIMED_OUT = "timed_out"
    CANCELED = "canceled"
    FAILED = "failed"


@dataclass
class AuthSession:
    verifier: str
    state: str
    deadline: float

    @property
    def challenge(self) -> str:
        return generate_code_challenge(self.verifier)

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    @classmethod
    def new(cls, timeout_seconds: float) -> "AuthSession":
        return cls(
            verifier=generate_code_verifier(),
            state=generate_state(),
            deadline=time.monotonic() + timeout_seconds,
        )
