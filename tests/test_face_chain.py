"""Tests for the face verification provider chain."""

import asyncio

import pytest

from attendance_guard.errors import ProviderError
from attendance_guard.face.chain import CHAIN_PROVIDER_NAME, FaceVerificationChain

from conftest import CAPTURED_PHOTO, REFERENCE_PHOTO, FakeProvider, matched_result


def run_chain(chain: FaceVerificationChain):
    return asyncio.run(chain.verify(CAPTURED_PHOTO, REFERENCE_PHOTO))


def outcomes(result):
    return [(a.provider_name, a.outcome) for a in result.attempts]


def test_unavailable_provider_is_skipped_and_lower_priority_not_invoked() -> None:
    a = FakeProvider("a", result=matched_result("a"), is_available=False)
    b = FakeProvider("b", result=matched_result("b"))
    c = FakeProvider("c", result=matched_result("c"))

    result = run_chain(FaceVerificationChain([a, b, c]))

    assert result.success
    assert result.provider_name == "b"
    assert a.calls == 0
    assert c.calls == 0
    assert outcomes(result) == [("a", "skipped"), ("b", "success")]


def test_result_is_tagged_with_the_provider_that_produced_it() -> None:
    provider = FakeProvider("gemini-vision", result=matched_result("something-else"))

    result = run_chain(FaceVerificationChain([provider]))

    assert result.provider_name == "gemini-vision"


def test_error_falls_back_to_next_provider() -> None:
    a = FakeProvider("a", error=ProviderError("a", "HTTP 500"))
    b = FakeProvider("b", result=matched_result("b"))

    result = run_chain(FaceVerificationChain([a, b]))

    assert result.provider_name == "b"
    assert outcomes(result) == [("a", "error"), ("b", "success")]
    assert "HTTP 500" in result.attempts[0].reason


def test_unsuccessful_result_falls_back_to_next_provider() -> None:
    a = FakeProvider("a", result=matched_result("a", success=False, reasoning="quota exceeded"))
    b = FakeProvider("b", result=matched_result("b"))

    result = run_chain(FaceVerificationChain([a, b]))

    assert result.provider_name == "b"
    assert outcomes(result) == [("a", "unsuccessful"), ("b", "success")]


def test_non_matching_verdict_is_still_a_successful_result() -> None:
    a = FakeProvider("a", result=matched_result("a", match_score=0.1))
    b = FakeProvider("b", result=matched_result("b"))

    result = run_chain(FaceVerificationChain([a, b]))

    assert result.provider_name == "a"
    assert result.match_score == 0.1
    assert b.calls == 0


def test_slow_provider_times_out() -> None:
    slow = FakeProvider("slow", result=matched_result("slow"), delay=1.0)
    fast = FakeProvider("fast", result=matched_result("fast"))

    result = run_chain(FaceVerificationChain([slow, fast], provider_timeout=0.05))

    assert result.provider_name == "fast"
    assert outcomes(result) == [("slow", "timeout"), ("fast", "success")]
    assert slow.cancelled


def test_exhaustion_returns_aggregate_failure_with_last_error() -> None:
    a = FakeProvider("a", error=ProviderError("a", "HTTP 429"))
    b = FakeProvider("b", error=ProviderError("b", "connection failed"))

    result = run_chain(FaceVerificationChain([a, b]))

    assert not result.success
    assert result.provider_name == CHAIN_PROVIDER_NAME
    assert "connection failed" in result.reasoning
    assert outcomes(result) == [("a", "error"), ("b", "error")]


def test_no_available_provider() -> None:
    result = run_chain(FaceVerificationChain([FakeProvider("a", is_available=False)]))

    assert not result.success
    assert result.reasoning == "No face verification provider available"


def test_exhausted_budget_skips_remaining_providers() -> None:
    provider = FakeProvider("a", result=matched_result("a"))

    result = run_chain(FaceVerificationChain([provider], budget=0))

    assert not result.success
    assert provider.calls == 0
    assert outcomes(result) == [("a", "skipped")]


def test_race_prefers_higher_priority_success() -> None:
    primary = FakeProvider("primary", result=matched_result("primary"), delay=0.1)
    backup = FakeProvider("backup", result=matched_result("backup"))

    result = run_chain(FaceVerificationChain([primary, backup], mode="race"))

    assert result.provider_name == "primary"
    assert backup.calls == 1


def test_race_cancels_pending_providers_once_a_result_is_chosen() -> None:
    failing = FakeProvider("failing", error=ProviderError("failing", "HTTP 503"))
    winner = FakeProvider("winner", result=matched_result("winner"), delay=0.05)
    slow = FakeProvider("slow", result=matched_result("slow"), delay=5.0)

    result = run_chain(FaceVerificationChain([failing, winner, slow], mode="race"))

    assert result.provider_name == "winner"
    assert slow.cancelled
    assert outcomes(result) == [("failing", "error"), ("winner", "success"), ("slow", "cancelled")]


def test_race_cancels_providers_when_caller_is_cancelled() -> None:
    a = FakeProvider("a", result=matched_result("a"), delay=5.0)
    b = FakeProvider("b", result=matched_result("b"), delay=5.0)
    chain = FaceVerificationChain([a, b], mode="race")

    async def abandon():
        task = asyncio.ensure_future(chain.verify(CAPTURED_PHOTO, REFERENCE_PHOTO))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(abandon())

    assert a.cancelled
    assert b.cancelled


def test_unknown_mode_rejected() -> None:
    with pytest.raises(ValueError):
        FaceVerificationChain([], mode="parallel")


def test_close_closes_every_provider() -> None:
    providers = [FakeProvider("a"), FakeProvider("b")]

    asyncio.run(FaceVerificationChain(providers).close())

    assert all(p.closed for p in providers)
