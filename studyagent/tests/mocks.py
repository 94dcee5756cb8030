import asyncio
import time
from datetime import date
from typing import Any, Dict, List, Optional

from studyagent.core.errors import PersistenceError
from studyagent.features.usage.store import UsageRecord
from studyagent.models.plan import PlanLimits


def function_call_response(name: str, args: Optional[Dict[str, Any]] = None, total_tokens: int = 120) -> Dict[str, Any]:
    return {
        "candidates": [{"content": {"role": "model", "parts": [{"functionCall": {"name": name, "args": args or {}}}]}}],
        "usageMetadata": {"promptTokenCount": total_tokens - 20, "candidatesTokenCount": 20, "totalTokenCount": total_tokens},
    }


def text_response(text: str, total_tokens: int = 120) -> Dict[str, Any]:
    return {
        "candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}],
        "usageMetadata": {"totalTokenCount": total_tokens},
    }


class FakeOracle:
    """Returns a canned response (or raises a canned error) and records calls."""

    def __init__(
        self,
        response: Optional[Dict[str, Any]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.delay = delay
        self.response = response if response is not None else text_response('{"intent": "none", "confidence": 0.3}')
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def generate(self, prompt, function_declarations, *, temperature, max_output_tokens, timeout):
        self.calls.append(
            {
                "prompt": prompt,
                "function_declarations": function_declarations,
                "temperature": temperature,
                "max_output_tokens": max_output_tokens,
                "timeout": timeout,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response

    async def aclose(self):
        self.closed = True


class InMemoryUsageStore:
    def __init__(self, plan_id: str = "free"):
        self.plan_id = plan_id
        self.records: Dict[str, UsageRecord] = {}
        self.increments: List[int] = []

    def set_usage(self, user_id: str, tokens_used: int, period_start: date) -> None:
        self.records[user_id] = UsageRecord(user_id, self.plan_id, tokens_used, period_start)

    def get_or_create(self, user_id: str, period_start: date) -> UsageRecord:
        record = self.records.get(user_id)
        if record is None or record.period_start < period_start:
            record = UsageRecord(user_id, self.plan_id, 0, period_start)
            self.records[user_id] = record
        return record

    def increment(self, user_id: str, amount: int, period_start: date) -> None:
        record = self.get_or_create(user_id, period_start)
        self.records[user_id] = UsageRecord(user_id, record.plan_id, record.tokens_used + amount, period_start)
        self.increments.append(amount)


class SlowUsageStore(InMemoryUsageStore):
    """Blocks on every read, like a slow database round-trip."""

    def __init__(self, delay: float = 0.2):
        super().__init__()
        self.delay = delay
        self.reads = 0

    def get_or_create(self, user_id: str, period_start: date) -> UsageRecord:
        self.reads += 1
        time.sleep(self.delay)
        return super().get_or_create(user_id, period_start)

    def increment(self, user_id: str, amount: int, period_start: date) -> None:
        time.sleep(self.delay)
        record = InMemoryUsageStore.get_or_create(self, user_id, period_start)
        self.records[user_id] = UsageRecord(user_id, record.plan_id, record.tokens_used + amount, period_start)
        self.increments.append(amount)


class FailingUsageStore:
    def get_or_create(self, user_id: str, period_start: date) -> UsageRecord:
        raise PersistenceError("database unreachable")

    def increment(self, user_id: str, amount: int, period_start: date) -> None:
        raise PersistenceError("database unreachable")


class StaticPlanLookup:
    def __init__(self, limit: int = 10_000, tier: str = "free"):
        self.limits = PlanLimits(plan_tier=tier, period_limit=limit)

    def resolve(self, user_id: str) -> PlanLimits:
        return self.limits
