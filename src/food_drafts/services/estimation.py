"""Cancellable nutrition estimation for drafts."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

from pydantic import ValidationError

from food_drafts.domain.drafts import Draft, FoodComponent
from food_drafts.domain.estimation import FoodEstimate, RefinedEstimate
from food_drafts.services.drafts import DraftStore

_logger = logging.getLogger(__name__)

HTTP_TOO_MANY_REQUESTS = 429


class EstimationError(RuntimeError):
    """Terminal estimation failure surfaced to the user."""


class EstimationRateLimitError(EstimationError):
    """The estimation service rejected the request as rate limited."""


class EstimationNotAllowedError(EstimationError):
    """The user is not entitled to run estimations."""


class CancellationToken:
    """Abort handle owned by exactly one estimation request."""

    def __init__(self) -> None:
        self._cancelled = False
        self._task: asyncio.Future | None = None

    @property
    def cancelled(self) -> bool:
        """Return whether cancellation was requested."""
        return self._cancelled

    def bind(self, task: asyncio.Future) -> None:
        """Attach the running request so cancelling interrupts it."""
        self._task = task
        if self._cancelled:
            task.cancel()

    def cancel(self) -> None:
        """Cancel the request; repeated calls are harmless."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


@dataclass
class EstimationCoordinator:
    """Keeps at most one live estimation token per draft."""

    _tokens: dict[UUID, CancellationToken] = field(
        default_factory=dict, init=False, repr=False
    )

    def track(self, draft_id: UUID, token: CancellationToken) -> None:
        """Register a token, cancelling whichever one it supersedes."""
        existing = self._tokens.get(draft_id)
        if existing is not None and existing is not token:
            existing.cancel()
        self._tokens[draft_id] = token

    def cancel(self, draft_id: UUID) -> bool:
        """Cancel and drop the draft's token; return whether one existed."""
        token = self._tokens.pop(draft_id, None)
        if token is None:
            return False
        token.cancel()
        return True

    def clear(self, draft_id: UUID, token: CancellationToken | None = None) -> None:
        """Drop the registration without cancelling.

        When ``token`` is given, only that token's registration is removed.
        """
        if token is not None and self._tokens.get(draft_id) is not token:
            return
        self._tokens.pop(draft_id, None)

    def is_current(self, draft_id: UUID, token: CancellationToken) -> bool:
        """Return whether ``token`` is the registered one for the draft."""
        return self._tokens.get(draft_id) is token


class EstimationClient(Protocol):
    """Remote nutrition estimation backend."""

    async def estimate_text(self, *, description: str, language: str) -> dict:
        """Estimate macros from a free-text description."""

    async def estimate_image(
        self,
        *,
        description: str,
        remote_image_path: str,
        local_image_path: str | None,
        language: str,
    ) -> dict:
        """Estimate macros from an uploaded image and optional description."""

    async def refine(
        self, *, food_components: list[dict[str, object]], language: str
    ) -> dict:
        """Recalculate macros for edited components."""


@dataclass
class EstimationService:
    """Runs estimations against drafts and writes results back.

    Results are written only when the request's token is still registered for
    the draft and the draft is still open; anything else is a stale response
    and is dropped silently.
    """

    client: EstimationClient
    draft_store: DraftStore
    coordinator: EstimationCoordinator
    may_estimate: Callable[[], bool]
    language: str = "en"
    retry_attempts: int = 1
    retry_delay_seconds: float = 0.3

    async def estimate(self, draft_id: UUID) -> Draft | None:
        """Estimate a draft from its image, or from its text when it has none."""
        draft = self._snapshot(draft_id)
        if draft is None:
            return None

        if draft.has_remote_image:
            return await self._run(
                draft_id,
                lambda: self.client.estimate_image(
                    description=draft.description,
                    remote_image_path=draft.remote_image_path or "",
                    local_image_path=draft.local_image_path,
                    language=self.language,
                ),
                _apply_estimate,
                action="estimate_image",
            )
        return await self._run(
            draft_id,
            lambda: self.client.estimate_text(
                description=draft.description, language=self.language
            ),
            _apply_estimate,
            action="estimate_text",
        )

    async def refine(self, draft_id: UUID) -> Draft | None:
        """Recalculate macros from the draft's edited food components."""
        draft = self._snapshot(draft_id)
        if draft is None or not draft.food_components:
            return None
        components = build_refine_components(
            draft.food_components, draft.baseline_food_components
        )
        return await self._run(
            draft_id,
            lambda: self.client.refine(
                food_components=components, language=self.language
            ),
            _apply_refinement,
            action="refine",
        )

    def cancel(self, draft_id: UUID) -> bool:
        """Cancel the draft's in-flight estimation, if any."""
        cancelled = self.coordinator.cancel(draft_id)
        if cancelled:
            self.draft_store.update(draft_id, is_estimating=False)
        return cancelled

    def _snapshot(self, draft_id: UUID) -> Draft | None:
        if not self.may_estimate():
            raise EstimationNotAllowedError("Estimation requires an active plan")
        return self.draft_store.get(draft_id)

    async def _run(
        self,
        draft_id: UUID,
        call: Callable[[], Awaitable[dict]],
        apply: Callable[[dict], dict[str, object]],
        *,
        action: str,
    ) -> Draft | None:
        token = CancellationToken()
        task = asyncio.ensure_future(self._call_with_retry(call, action=action))
        token.bind(task)
        self.coordinator.track(draft_id, token)
        self.draft_store.update(draft_id, is_estimating=True, estimation_failed=False)

        try:
            payload = await task
            changes = apply(payload)
        except asyncio.CancelledError:
            if token.cancelled:
                _logger.debug("Discarded cancelled %s for draft %s", action, draft_id)
                return None
            self._settle(draft_id, token, failed=False)
            raise
        except Exception as exc:
            if not self.coordinator.is_current(draft_id, token):
                _logger.debug("Discarded stale %s failure for %s", action, draft_id)
                return None
            self._settle(draft_id, token, failed=True)
            _logger.warning(
                "Estimation %s failed for draft %s: %s", action, draft_id, exc
            )
            if _status_code_from_exception(exc) == str(HTTP_TOO_MANY_REQUESTS):
                raise EstimationRateLimitError("Estimation rate limit reached") from exc
            raise EstimationError(f"Estimation {action} failed") from exc

        if not self.coordinator.is_current(draft_id, token):
            _logger.debug("Discarded stale %s result for draft %s", action, draft_id)
            return None
        self.coordinator.clear(draft_id, token)
        updated = self.draft_store.update(draft_id, **changes)
        if updated is not None:
            _logger.info("Estimation %s completed for draft %s", action, draft_id)
        return updated

    def _settle(
        self, draft_id: UUID, token: CancellationToken, *, failed: bool
    ) -> None:
        if not self.coordinator.is_current(draft_id, token):
            return
        self.coordinator.clear(draft_id, token)
        self.draft_store.update(
            draft_id, is_estimating=False, estimation_failed=failed
        )

    async def _call_with_retry(
        self, func: Callable[[], Awaitable[dict]], *, action: str
    ) -> dict:
        """Call an async function with a short retry."""
        attempt = 0
        while True:
            try:
                return await func()
            except Exception as exc:
                attempt += 1
                status_code = _status_code_from_exception(exc)
                _logger.warning(
                    "Estimation %s failed (attempt %s/%s, status=%s): %s",
                    action,
                    attempt,
                    self.retry_attempts + 1,
                    status_code,
                    exc,
                )
                if (
                    attempt > self.retry_attempts
                    or status_code == str(HTTP_TOO_MANY_REQUESTS)
                ):
                    raise
                await asyncio.sleep(self.retry_delay_seconds)


def build_refine_components(
    current: tuple[FoodComponent, ...], baseline: tuple[FoodComponent, ...]
) -> list[dict[str, object]]:
    """Pair edited components with their baseline by position."""
    payload: list[dict[str, object]] = []
    for index, component in enumerate(current):
        item: dict[str, object] = {
            "name": component.name,
            "amount": component.amount,
            "unit": component.unit,
        }
        if index < len(baseline):
            base = baseline[index]
            item.update(
                {
                    "baseName": base.name,
                    "baseAmount": base.amount,
                    "baseUnit": base.unit,
                    "baseCalories": base.calories,
                    "baseProtein": base.protein,
                    "baseCarbs": base.carbs,
                    "baseFat": base.fat,
                }
            )
        payload.append(item)
    return payload


def _apply_estimate(payload: dict) -> dict[str, object]:
    result = _validate(FoodEstimate, payload)
    changes = _result_changes(result)
    changes["title"] = result.generated_title
    return changes


def _apply_refinement(payload: dict) -> dict[str, object]:
    return _result_changes(_validate(RefinedEstimate, payload))


def _validate(model: type[RefinedEstimate], payload: dict) -> RefinedEstimate:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise EstimationError("Estimation returned an invalid payload") from exc


def _result_changes(result: RefinedEstimate) -> dict[str, object]:
    components = result.components()
    return {
        "calories": result.calories,
        "protein": result.protein,
        "carbs": result.carbs,
        "fat": result.fat,
        "food_components": components,
        "baseline_food_components": components,
        "is_estimating": False,
        "estimation_failed": False,
    }


def _status_code_from_exception(exc: Exception) -> str:
    """Extract HTTP status code from an exception, if available."""
    response = getattr(exc, "response", None)
    status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        return str(status_code)
    return "n/a"
