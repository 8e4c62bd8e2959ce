"""In-memory fakes and helpers for the companion test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from companion.core.errors import CapacityError
from companion.core.models import ProviderSession
from companion.core.retry import RetryPolicy

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class SleepRecorder:
    """Stands in for asyncio.sleep; records requested delays, never waits."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeGenerative:
    """GenerativeProvider returning scripted results (str or exception)."""

    def __init__(self, *results: Any) -> None:
        self.results = list(results)
        self.calls = 0
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.calls += 1
        self.prompts.append(prompt)
        result = self.results.pop(0) if self.results else "A thoughtful generated reply for you."
        if isinstance(result, BaseException):
            raise result
        return result


class FakeSpeech:
    def __init__(self, data: bytes = b"ID3-fake-mp3", error: Optional[BaseException] = None) -> None:
        self.data = data
        self.error = error
        self.calls = 0
        self.voices: List[Any] = []

    async def synthesize(self, text: str, voice: Any) -> bytes:
        self.calls += 1
        self.voices.append(voice)
        if self.error is not None:
            raise self.error
        return self.data


class FakeAvatarProvider:
    """
    In-memory AvatarProvider.

    `create_script` is consumed one entry per create_session call: an
    exception is raised, None means success.
    """

    def __init__(
        self,
        replica_ids=("r-sage",),
        create_script: Optional[List[Optional[BaseException]]] = None,
        clock=lambda: NOW,
    ) -> None:
        self.replicas = [{"replica_id": r} for r in replica_ids]
        self.create_script = list(create_script or [])
        self.clock = clock
        self.sessions: Dict[str, ProviderSession] = {}
        self.create_calls: List[Dict[str, Any]] = []
        self.end_calls: List[str] = []
        self._n = 0

    def add_session(self, sid: str, age_minutes: Optional[float], status: str = "active") -> None:
        created = None if age_minutes is None else self.clock() - timedelta(minutes=age_minutes)
        self.sessions[sid] = ProviderSession(id=sid, status=status, created_at=created)

    @property
    def active_ids(self) -> List[str]:
        return [s.id for s in self.sessions.values() if s.is_active]

    async def list_replicas(self) -> List[Dict[str, Any]]:
        return list(self.replicas)

    async def create_session(self, replica_ref, persona_ref, name, greeting=None, limits=None):
        self.create_calls.append({
            "replica_ref": replica_ref,
            "persona_ref": persona_ref,
            "name": name,
            "greeting": greeting,
            "limits": limits,
        })
        outcome = self.create_script.pop(0) if self.create_script else None
        if outcome is not None:
            raise outcome
        self._n += 1
        sid = f"c{self._n}"
        self.sessions[sid] = ProviderSession(id=sid, status="active", created_at=self.clock())
        return {"id": sid, "url": f"https://tavus.daily.co/{sid}"}

    async def end_session(self, session_id: str) -> None:
        self.end_calls.append(session_id)
        existing = self.sessions.get(session_id)
        if existing is not None:
            self.sessions[session_id] = ProviderSession(
                id=existing.id, status="ended", created_at=existing.created_at
            )

    async def list_sessions(self) -> List[ProviderSession]:
        return list(self.sessions.values())

    async def get_session(self, session_id: str) -> ProviderSession:
        return self.sessions[session_id]


def capacity() -> CapacityError:
    return CapacityError("maximum concurrent conversations reached", provider="tavus", status_code=400)


def fast_policy(max_attempts: int = 3, sleep: Optional[SleepRecorder] = None) -> RetryPolicy:
    return RetryPolicy(max_attempts=max_attempts, base_delay=1.0, sleep=sleep or SleepRecorder())
