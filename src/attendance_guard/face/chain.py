"""
Face Verification Chain
=======================
Ordered list of interchangeable providers with uniform fallback.

Modes:
- sequential: try providers one by one in priority order; each call is
  bounded by the provider timeout and by what is left of the shared budget
- race: start every available provider at once under the shared budget and
  consume results in priority order, so a lower-priority success never wins
  over a higher-priority one

In both modes the first successful result is returned, tagged with the
provider that produced it. Pending provider calls are cancelled as soon as
a result is chosen and when the caller itself is cancelled.
"""

import time
import asyncio
import logging
from typing import List, Optional, Callable, Tuple

from .models import FaceVerificationResult, ProviderAttempt
from .providers import FaceVerificationProvider

logger = logging.getLogger(__name__)

CHAIN_PROVIDER_NAME = "chain"
SEQUENTIAL = "sequential"
RACE = "race"


class FaceVerificationChain:
    """
    Usage:
        chain = FaceVerificationChain([OpenAIVisionProvider(), PerceptualHashProvider()])
        result = await chain.verify(captured_bytes, reference_bytes)
    """

    def __init__(
        self,
        providers: List[FaceVerificationProvider],
        provider_timeout: float = 10.0,
        budget: float = 30.0,
        mode: str = SEQUENTIAL,
        clock: Callable[[], float] = time.monotonic
    ):
        if mode not in (SEQUENTIAL, RACE):
            raise ValueError(f"Unknown chain mode '{mode}'")
        self.providers = list(providers)
        self.provider_timeout = provider_timeout
        self.budget = budget
        self.mode = mode
        self._clock = clock

    @property
    def provider_names(self) -> List[str]:
        return [p.name for p in self.providers]

    def _is_available(self, provider: FaceVerificationProvider) -> bool:
        try:
            return bool(provider.available())
        except Exception as e:
            logger.warning(f"[FACE] {provider.name} availability check failed: {e}")
            return False

    async def _run(self, provider: FaceVerificationProvider, captured: bytes, reference: bytes,
                   timeout: float) -> Tuple[Optional[FaceVerificationResult], ProviderAttempt]:
        """
        Execute one provider under a timeout.
        Never raises except for cancellation.
        """
        started = self._clock()

        def attempt(outcome: str, reason: Optional[str] = None) -> ProviderAttempt:
            elapsed_ms = (self._clock() - started) * 1000
            return ProviderAttempt(provider_name=provider.name, outcome=outcome, reason=reason,
                                   elapsed_ms=round(elapsed_ms, 1))

        try:
            result = await asyncio.wait_for(provider.execute(captured, reference, timeout), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[FACE] {provider.name} timed out after {timeout:.1f}s")
            return None, attempt("timeout", f"{provider.name}: timed out after {timeout:.1f}s")
        except Exception as e:
            logger.warning(f"[FACE] {provider.name} failed: {e}")
            return None, attempt("error", f"{provider.name}: {e}")

        if not result.success:
            reason = result.reasoning or "provider reported failure"
            logger.info(f"[FACE] {provider.name} unsuccessful: {reason}")
            return result, attempt("unsuccessful", f"{provider.name}: {reason}")

        return result, attempt("success")

    async def verify(self, captured: bytes, reference: bytes) -> FaceVerificationResult:
        """
        Run the chain.

        Returns:
            The first successful provider result, or an aggregate failure
            with provider_name "chain" carrying the last error
        """
        if self.mode == RACE:
            return await self._verify_race(captured, reference)
        return await self._verify_sequential(captured, reference)

    async def _verify_sequential(self, captured: bytes, reference: bytes) -> FaceVerificationResult:
        deadline = self._clock() + self.budget
        attempts: List[ProviderAttempt] = []
        last_error = "No face verification provider available"

        for provider in self.providers:
            if not self._is_available(provider):
                attempts.append(ProviderAttempt(provider_name=provider.name, outcome="skipped",
                                                reason="unavailable"))
                continue

            remaining = deadline - self._clock()
            if remaining <= 0:
                attempts.append(ProviderAttempt(provider_name=provider.name, outcome="skipped",
                                                reason="time budget exhausted"))
                last_error = "Face verification time budget exhausted"
                continue

            result, attempt = await self._run(provider, captured, reference, min(self.provider_timeout, remaining))
            attempts.append(attempt)

            if attempt.outcome == "success":
                return self._tag(result, provider, attempts)
            last_error = attempt.reason

        return self._aggregate_failure(last_error, attempts)

    async def _verify_race(self, captured: bytes, reference: bytes) -> FaceVerificationResult:
        attempts: List[ProviderAttempt] = []
        running = []

        for provider in self.providers:
            if not self._is_available(provider):
                attempts.append(ProviderAttempt(provider_name=provider.name, outcome="skipped",
                                                reason="unavailable"))
                continue
            timeout = min(self.provider_timeout, self.budget)
            task = asyncio.ensure_future(self._run(provider, captured, reference, timeout))
            running.append((provider, task))

        last_error = "No face verification provider available"
        try:
            for index, (provider, task) in enumerate(running):
                result, attempt = await task
                attempts.append(attempt)

                if attempt.outcome == "success":
                    for later, _ in running[index + 1:]:
                        attempts.append(ProviderAttempt(provider_name=later.name, outcome="cancelled",
                                                        reason=f"{provider.name} succeeded first"))
                    return self._tag(result, provider, attempts)
                last_error = attempt.reason

            return self._aggregate_failure(last_error, attempts)
        finally:
            pending = [task for _, task in running if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    @staticmethod
    def _tag(result: FaceVerificationResult, provider: FaceVerificationProvider,
             attempts: List[ProviderAttempt]) -> FaceVerificationResult:
        logger.info(f"[FACE] Verified by {provider.name}: match={result.match_score:.2f} "
                    f"confidence={result.confidence:.2f} fake={result.is_fake}")
        return result.model_copy(update={"provider_name": provider.name, "attempts": list(attempts)})

    @staticmethod
    def _aggregate_failure(last_error: str, attempts: List[ProviderAttempt]) -> FaceVerificationResult:
        logger.error(f"[FACE] All providers failed: {last_error}")
        result = FaceVerificationResult.failure(CHAIN_PROVIDER_NAME, last_error)
        return result.model_copy(update={"attempts": list(attempts)})

    async def close(self):
        """Release provider resources (HTTP sessions)."""
        for provider in self.providers:
            try:
                await provider.close()
            except Exception as e:
                logger.warning(f"[FACE] Failed to close {provider.name}: {e}")
