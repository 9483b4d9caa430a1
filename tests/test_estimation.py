"""Tests for estimation coordination and write-back."""

import asyncio
from datetime import date
from uuid import uuid4

import pytest

from food_drafts.domain.drafts import FoodComponent
from food_drafts.services.drafts import DraftStore
from food_drafts.services.estimation import (
    CancellationToken,
    EstimationCoordinator,
    EstimationError,
    EstimationNotAllowedError,
    EstimationRateLimitError,
    EstimationService,
    build_refine_components,
)
from tests.conftest import (
    FakeEstimationClient,
    FakeHttpError,
    estimate_payload,
    wait_for_calls,
)


def test_track_cancels_superseded_token() -> None:
    coordinator = EstimationCoordinator()
    draft_id = uuid4()
    token_a = CancellationToken()
    token_b = CancellationToken()

    coordinator.track(draft_id, token_a)
    coordinator.track(draft_id, token_b)

    assert token_a.cancelled is True
    assert token_b.cancelled is False
    assert coordinator.cancel(draft_id) is True
    assert token_b.cancelled is True
    assert coordinator.cancel(draft_id) is False


def test_clear_removes_without_cancelling(draft_store: DraftStore) -> None:
    coordinator = EstimationCoordinator()
    draft_id = draft_store.create(date(2025, 5, 1))
    token = CancellationToken()
    coordinator.track(draft_id, token)

    coordinator.clear(draft_id)

    assert token.cancelled is False
    assert coordinator.cancel(draft_id) is False


def test_clear_ignores_other_token(draft_store: DraftStore) -> None:
    coordinator = EstimationCoordinator()
    draft_id = draft_store.create(date(2025, 5, 1))
    current = CancellationToken()
    coordinator.track(draft_id, current)

    coordinator.clear(draft_id, CancellationToken())

    assert coordinator.is_current(draft_id, current)


def test_token_cancels_bound_task() -> None:
    async def scenario() -> bool:
        token = CancellationToken()
        token.cancel()
        task = asyncio.ensure_future(asyncio.sleep(10))
        token.bind(task)
        await asyncio.sleep(0)
        return task.cancelled()

    assert asyncio.run(scenario()) is True


def test_text_estimate_writes_result(
    estimation_service: EstimationService,
    estimation_client: FakeEstimationClient,
    draft_store: DraftStore,
) -> None:
    draft_id = draft_store.create(date(2025, 5, 1))
    draft_store.update(draft_id, description="grilled chicken")

    result = asyncio.run(estimation_service.estimate(draft_id))

    assert result is not None
    assert estimation_client.calls[0] == (
        "text",
        {"description": "grilled chicken", "language": "en"},
    )
    assert result.title == "Chicken and rice"
    assert result.calories == 300
    assert result.protein == 40
    assert result.food_components[0].name == "chicken"
    assert result.baseline_food_components == result.food_components
    assert result.is_estimating is False
    assert result.estimation_failed is False


def test_image_estimate_used_when_uploaded(
    estimation_service: EstimationService,
    estimation_client: FakeEstimationClient,
    draft_store: DraftStore,
) -> None:
    draft_id = draft_store.create(date(2025, 5, 1))
    draft_store.update(
        draft_id,
        local_image_path="/durable/a.jpg",
        remote_image_path="signed/food-image-a.jpg",
    )

    asyncio.run(estimation_service.estimate(draft_id))

    kind, payload = estimation_client.calls[0]
    assert kind == "image"
    assert payload["remote_image_path"] == "signed/food-image-a.jpg"


def test_new_estimation_discards_stale_response(
    estimation_service: EstimationService,
    estimation_client: FakeEstimationClient,
    draft_store: DraftStore,
) -> None:
    draft_id = draft_store.create(date(2025, 5, 1))
    estimation_client.responses = [
        estimate_payload(title="First", calories=100),
        estimate_payload(title="Second", calories=200),
    ]

    async def scenario():  # type: ignore[no-untyped-def]
        estimation_client.gate = asyncio.Event()
        first = asyncio.create_task(estimation_service.estimate(draft_id))
        await wait_for_calls(estimation_client, 1)
        second = asyncio.create_task(estimation_service.estimate(draft_id))
        await wait_for_calls(estimation_client, 2)
        estimation_client.gate.set()
        return await asyncio.gather(first, second)

    first_result, second_result = asyncio.run(scenario())

    assert first_result is None
    assert second_result is not None
    draft = draft_store.get(draft_id)
    assert draft is not None
    assert draft.title == "Second"
    assert draft.calories == 200
    assert draft.is_estimating is False


def test_cancel_stops_in_flight_estimation(
    estimation_service: EstimationService,
    estimation_client: FakeEstimationClient,
    draft_store: DraftStore,
) -> None:
    draft_id = draft_store.create(date(2025, 5, 1))

    async def scenario():  # type: ignore[no-untyped-def]
        estimation_client.gate = asyncio.Event()
        running = asyncio.create_task(estimation_service.estimate(draft_id))
        await wait_for_calls(estimation_client, 1)
        estimating = draft_store.get(draft_id)
        cancelled = estimation_service.cancel(draft_id)
        estimation_client.gate.set()
        return estimating, cancelled, await running

    estimating, cancelled, result = asyncio.run(scenario())

    assert estimating is not None
    assert estimating.is_estimating is True
    assert cancelled is True
    assert result is None
    draft = draft_store.get(draft_id)
    assert draft is not None
    assert draft.is_estimating is False
    assert draft.calories == 0
    assert estimation_service.cancel(draft_id) is False


def test_result_for_cleared_draft_is_dropped(
    estimation_service: EstimationService,
    estimation_client: FakeEstimationClient,
    draft_store: DraftStore,
) -> None:
    draft_id = draft_store.create(date(2025, 5, 1))

    async def scenario():  # type: ignore[no-untyped-def]
        estimation_client.gate = asyncio.Event()
        running = asyncio.create_task(estimation_service.estimate(draft_id))
        await wait_for_calls(estimation_client, 1)
        await draft_store.clear(draft_id)
        estimation_client.gate.set()
        return await running

    assert asyncio.run(scenario()) is None
    assert not draft_store.exists(draft_id)


def test_transient_failure_is_retried(
    estimation_service: EstimationService,
    estimation_client: FakeEstimationClient,
    draft_store: DraftStore,
) -> None:
    draft_id = draft_store.create(date(2025, 5, 1))
    estimation_client.responses = [FakeHttpError(503), estimate_payload()]

    result = asyncio.run(estimation_service.estimate(draft_id))

    assert result is not None
    assert len(estimation_client.calls) == 2


def test_terminal_failure_marks_draft(
    estimation_service: EstimationService,
    estimation_client: FakeEstimationClient,
    draft_store: DraftStore,
) -> None:
    draft_id = draft_store.create(date(2025, 5, 1))
    estimation_client.responses = [FakeHttpError(500), FakeHttpError(500)]

    with pytest.raises(EstimationError):
        asyncio.run(estimation_service.estimate(draft_id))

    draft = draft_store.get(draft_id)
    assert draft is not None
    assert draft.estimation_failed is True
    assert draft.is_estimating is False


def test_rate_limit_is_not_retried(
    estimation_service: EstimationService,
    estimation_client: FakeEstimationClient,
    draft_store: DraftStore,
) -> None:
    draft_id = draft_store.create(date(2025, 5, 1))
    estimation_client.responses = [FakeHttpError(429), estimate_payload()]

    with pytest.raises(EstimationRateLimitError):
        asyncio.run(estimation_service.estimate(draft_id))

    assert len(estimation_client.calls) == 1


def test_invalid_payload_is_terminal(
    estimation_service: EstimationService,
    estimation_client: FakeEstimationClient,
    draft_store: DraftStore,
) -> None:
    draft_id = draft_store.create(date(2025, 5, 1))
    estimation_client.responses = [{"foodComponents": "not a list"}]

    with pytest.raises(EstimationError):
        asyncio.run(estimation_service.estimate(draft_id))

    draft = draft_store.get(draft_id)
    assert draft is not None
    assert draft.estimation_failed is True


def test_closed_gate_blocks_estimation(
    estimation_client: FakeEstimationClient, draft_store: DraftStore
) -> None:
    service = EstimationService(
        client=estimation_client,
        draft_store=draft_store,
        coordinator=EstimationCoordinator(),
        may_estimate=lambda: False,
    )
    draft_id = draft_store.create(date(2025, 5, 1))

    with pytest.raises(EstimationNotAllowedError):
        asyncio.run(service.estimate(draft_id))

    assert estimation_client.calls == []


def test_unknown_draft_is_not_estimated(
    estimation_service: EstimationService, estimation_client: FakeEstimationClient
) -> None:
    assert asyncio.run(estimation_service.estimate(uuid4())) is None
    assert estimation_client.calls == []


def test_totals_default_to_component_sums(
    estimation_service: EstimationService,
    estimation_client: FakeEstimationClient,
    draft_store: DraftStore,
) -> None:
    draft_id = draft_store.create(date(2025, 5, 1))
    payload = estimate_payload()
    payload["foodComponents"].append(  # type: ignore[attr-defined]
        {
            "name": "rice",
            "amount": 1,
            "unit": "piece",
            "recommendedMeasurement": {"amount": 180, "unit": "g"},
            "calories": 230,
            "protein": 4,
            "carbs": 50,
            "fat": 1,
        }
    )
    estimation_client.responses = [payload]

    result = asyncio.run(estimation_service.estimate(draft_id))

    assert result is not None
    assert (result.calories, result.protein, result.carbs, result.fat) == (
        530,
        44,
        50,
        9,
    )
    rice = result.food_components[1]
    assert rice.recommended_measurement is not None
    assert rice.recommended_measurement.amount == 180


def test_refine_sends_baseline_and_keeps_title(
    estimation_service: EstimationService,
    estimation_client: FakeEstimationClient,
    draft_store: DraftStore,
) -> None:
    draft_id = draft_store.create(date(2025, 5, 1))
    asyncio.run(estimation_service.estimate(draft_id))
    draft_store.update(
        draft_id,
        food_components=(FoodComponent(name="chicken", amount=300, unit="g"),),
    )
    estimation_client.responses = [
        {
            "foodComponents": [
                {
                    "name": "chicken",
                    "amount": 300,
                    "unit": "g",
                    "calories": 600,
                    "protein": 80,
                    "carbs": 0,
                    "fat": 16,
                }
            ]
        }
    ]

    result = asyncio.run(estimation_service.refine(draft_id))

    kind, payload = estimation_client.calls[-1]
    assert kind == "refine"
    sent = payload["food_components"][0]  # type: ignore[index]
    assert sent["amount"] == 300
    assert sent["baseAmount"] == 150
    assert sent["baseCalories"] == 300
    assert result is not None
    assert result.title == "Chicken and rice"
    assert result.calories == 600
    assert result.baseline_food_components[0].amount == 300


def test_refine_without_components_is_noop(
    estimation_service: EstimationService,
    estimation_client: FakeEstimationClient,
    draft_store: DraftStore,
) -> None:
    draft_id = draft_store.create(date(2025, 5, 1))

    assert asyncio.run(estimation_service.refine(draft_id)) is None
    assert estimation_client.calls == []


def test_build_refine_components_pairs_by_index() -> None:
    current = (
        FoodComponent(name="toast", amount=2, unit="piece"),
        FoodComponent(name="jam", amount=20, unit="g"),
    )
    baseline = (FoodComponent(name="toast", amount=1, unit="piece", calories=80),)

    payload = build_refine_components(current, baseline)

    assert payload[0]["baseAmount"] == 1
    assert payload[0]["baseCalories"] == 80
    assert payload[1] == {"name": "jam", "amount": 20, "unit": "g"}
