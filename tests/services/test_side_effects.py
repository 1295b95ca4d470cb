from __future__ import annotations

import asyncio
import logging

import pytest
from prometheus_client import REGISTRY

from course_core.core.errors import DownstreamFailure
from course_core.services.side_effects import SideEffectBatch


def _failures(effect: str) -> float:
    value = REGISTRY.get_sample_value(
        "side_effect_failures_total", labels={"effect": effect}
    )
    return value or 0.0


async def _ok() -> str:
    return "cert-1"


async def _boom() -> None:
    raise ConnectionError("sink unreachable")


def test_successful_effect_records_value() -> None:
    batch = SideEffectBatch()
    outcome = asyncio.run(batch.run("certificate", _ok))

    assert outcome.ok
    assert outcome.value == "cert-1"
    assert batch.failures == []


def test_failing_effect_is_captured_not_raised(
    caplog: pytest.LogCaptureFixture,
) -> None:
    batch = SideEffectBatch(tenant_id="tenant-a", course_id="course-1")
    before = _failures("audit")

    with caplog.at_level(logging.ERROR, logger="course_core.services.side_effects"):
        outcome = asyncio.run(batch.run("audit", _boom))

    assert not outcome.ok
    assert isinstance(outcome.failure, DownstreamFailure)
    assert isinstance(outcome.failure.cause, ConnectionError)
    assert _failures("audit") - before == 1

    record = next(r for r in caplog.records if "audit failed" in r.getMessage())
    assert record.course_id == "course-1"
    assert record.effect == "audit"


def test_later_effects_run_after_a_failure() -> None:
    batch = SideEffectBatch()

    async def run():
        await batch.run("certificate", _boom)
        await batch.run("audit", _ok)

    asyncio.run(run())

    assert [o.effect for o in batch.outcomes] == ["certificate", "audit"]
    assert [f.effect for f in batch.failures] == ["certificate"]
