"""Tests for claim interpretation."""

from unittest.mock import AsyncMock, patch

import pytest
from kubernetes_asyncio.client import V1ObjectReference
from safir.testing.kubernetes import MockKubernetesApi
from structlog.stdlib import BoundLogger

from voldriver.exceptions import ClaimNotFoundError
from voldriver.models.domain.kubernetes import Claim, EventType
from voldriver.services.resolver import (
    CloneSourceResolver,
    get_claim_class_name,
    get_claim_match_labels,
    merge_override_options,
)
from voldriver.storage.kubernetes.events import EventRecorder

from ..support.kubernetes import FakeInformer, make_claim, read_events


def test_class_name() -> None:
    claim = Claim.from_dict(make_claim("claim", storage_class="gold"))
    assert get_claim_class_name(claim) == "gold"

    claim = Claim.from_dict(make_claim("claim", storage_class=None))
    assert get_claim_class_name(claim) == ""

    # The legacy annotation wins, even when it is empty.
    annotations = {"volume.beta.kubernetes.io/storage-class": "silver"}
    raw = make_claim("claim", storage_class="gold", annotations=annotations)
    assert get_claim_class_name(Claim.from_dict(raw)) == "silver"
    annotations = {"volume.beta.kubernetes.io/storage-class": ""}
    raw = make_claim("claim", storage_class="gold", annotations=annotations)
    assert get_claim_class_name(Claim.from_dict(raw)) == ""


def test_match_labels() -> None:
    claim = Claim.from_dict(make_claim("claim"))
    assert get_claim_match_labels(claim) == {}
    claim = Claim.from_dict(make_claim("claim", match_labels={"a": "b"}))
    assert get_claim_match_labels(claim) == {"a": "b"}


def test_merge_overrides(logger: BoundLogger) -> None:
    annotations = {
        "hpe.com/description": "from claim",
        "HPE.com/PerfPolicy": "Fast",
        "hpe.com/limitIOPS": "1000",
        "example.com/description": "ignored",
    }
    claim = Claim.from_dict(make_claim("claim", annotations=annotations))
    options = {"description": "from class", "size": "10"}

    result = merge_override_options(
        claim, ["description", "perfPolicy"], options, "hpe.com/", logger
    )

    assert result == {
        "description": "from claim",
        "perfPolicy": "Fast",
        "size": "10",
    }
    assert options == {"description": "from class", "size": "10"}


def test_merge_overrides_prefix_match(logger: BoundLogger) -> None:
    annotations = {"a.example/param": "1"}
    claim = Claim.from_dict(make_claim("claim", annotations=annotations))

    result = merge_override_options(claim, ["p"], {}, "a.example/", logger)
    assert result == {"p": "1"}

    result = merge_override_options(claim, [], {}, "a.example/", logger)
    assert result == {}


@pytest.mark.asyncio
async def test_find_bound_claim(
    event_recorder: EventRecorder,
    mock_kubernetes: MockKubernetesApi,
    logger: BoundLogger,
) -> None:
    informer = FakeInformer(
        [
            make_claim("source", namespace="other", phase="Bound"),
            make_claim("source", phase="Pending"),
            make_claim("source", uid="bound", phase="Bound", volume_name="pv"),
        ]
    )
    resolver = CloneSourceResolver(informer, event_recorder, 60, logger)
    target = V1ObjectReference(name="target", namespace="default")

    with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
        claim = await resolver.find_bound_claim(target, "source")
        sleep.assert_not_awaited()

    assert claim.uid == "bound"
    assert claim.volume_name == "pv"
    assert await read_events(mock_kubernetes, "default") == []


@pytest.mark.asyncio
async def test_find_bound_claim_timeout(
    event_recorder: EventRecorder,
    mock_kubernetes: MockKubernetesApi,
    logger: BoundLogger,
) -> None:
    informer = FakeInformer([make_claim("source", phase="Pending")])
    resolver = CloneSourceResolver(informer, event_recorder, 2, logger)
    target = V1ObjectReference(
        kind="PersistentVolumeClaim", name="target", namespace="default"
    )

    with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
        with pytest.raises(ClaimNotFoundError) as excinfo:
            await resolver.find_bound_claim(target, "source")
        assert sleep.await_count == 2

    assert "2s" in str(excinfo.value)
    assert excinfo.value.waited == 2
    events = await read_events(mock_kubernetes, "default")
    assert len(events) == 1
    event = events[0]
    assert event.involved_object.name == "target"
    assert event.type == EventType.WARNING.value
    assert event.reason == "ProvisionStorage"
    assert "source" in event.message


@pytest.mark.asyncio
async def test_find_bound_claim_appears(
    event_recorder: EventRecorder, logger: BoundLogger
) -> None:
    informer = FakeInformer()
    resolver = CloneSourceResolver(informer, event_recorder, 10, logger)
    target = V1ObjectReference(name="target", namespace="default")

    async def bind(delay: float) -> None:
        informer.objects = [make_claim("source", phase="Bound")]

    with patch("asyncio.sleep", side_effect=bind) as sleep:
        claim = await resolver.find_bound_claim(target, "source")
        assert sleep.await_count == 1

    assert claim.name == "source"
