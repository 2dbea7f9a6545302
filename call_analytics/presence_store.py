"""In-memory presence management.

One PresenceFact per agent: status, the call in progress and when the last
call ended. Facts are short-lived by nature, so they live in process memory
with a TTL instead of a database.

Notes:
- Facts do not survive process restarts; agents re-announce themselves on
  reconnect.
- Every write refreshes the fact's TTL. Expired facts read as missing.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from call_analytics.models import AgentStatus, PresenceFact
from call_analytics.timeutil import Clock


class PresenceStore:
    """Key/value store of PresenceFact by agent code."""

    def __init__(self, ttl_seconds: int = 86400, clock: Optional[Clock] = None):
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or Clock()
        self._facts: Dict[str, PresenceFact] = {}
        self._expires_at: Dict[str, datetime] = {}

    def get(self, agent_code: str) -> Optional[PresenceFact]:
        """
        Retrieve the presence fact for an agent.

        Returns:
            PresenceFact or None if unknown or expired
        """
        if not agent_code:
            return None

        if self._is_expired(agent_code):
            self._drop(agent_code)
            return None

        return self._facts.get(agent_code)

    def set(self, agent_code: str, **fields: Any) -> PresenceFact:
        """
        Merge fields into an agent's fact (missing facts start empty).

        Args:
            agent_code: Agent code
            **fields: PresenceFact fields to overwrite

        Returns:
            The stored fact

        Raises:
            ValueError: if the result breaks "on_call iff a call is present"
        """
        now = self._clock.now()
        current = self.get(agent_code) or PresenceFact(agent_code=agent_code)
        fact = current.model_copy(update={**fields, "updated_at": now})

        on_call = fact.status == AgentStatus.ON_CALL
        if on_call != (fact.current_call is not None):
            raise ValueError(
                f"inconsistent presence for {agent_code}: status={fact.status.value}, "
                f"current_call={'set' if fact.current_call else 'none'}"
            )

        self._facts[agent_code] = fact
        self._expires_at[agent_code] = now + self._ttl
        return fact

    def get_all(self) -> Dict[str, PresenceFact]:
        """All live facts keyed by agent code."""
        self.purge_expired()
        return dict(self._facts)

    def delete(self, agent_code: str) -> bool:
        if agent_code not in self._facts:
            return False
        self._drop(agent_code)
        return True

    def purge_expired(self) -> int:
        expired = [code for code in list(self._facts) if self._is_expired(code)]
        for code in expired:
            self._drop(code)
        return len(expired)

    def _is_expired(self, agent_code: str) -> bool:
        expires_at = self._expires_at.get(agent_code)
        return expires_at is not None and expires_at <= self._clock.now()

    def _drop(self, agent_code: str) -> None:
        self._facts.pop(agent_code, None)
        self._expires_at.pop(agent_code, None)
