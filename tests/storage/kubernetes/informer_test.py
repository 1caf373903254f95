"""Tests for the caching informer."""

import asyncio
from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
from aiohttp import ClientConnectionError
from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1ObjectMeta,
    V1PersistentVolume,
    V1PersistentVolumeClaim,
)
from safir.testing.kubernetes import MockKubernetesApi
from structlog.stdlib import BoundLogger

from voldriver.exceptions import KubernetesError
from voldriver.models.domain.kubernetes import WatchEventType
from voldriver.storage.kubernetes.informer import (
    EventHandler,
    KubernetesInformer,
)
from voldriver.storage.kubernetes.watcher import WatchEvent

from ...support.watch import (
    ScriptedList,
    ScriptedWatch,
    make_event,
    make_pvc,
    make_pvc_list,
)


class Recorder:
    """Collect informer callbacks."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def on_add(self, obj: V1PersistentVolumeClaim) -> None:
        self.calls.append(("add", obj.metadata.name))

    async def on_update(
        self, old: V1PersistentVolumeClaim, new: V1PersistentVolumeClaim
    ) -> None:
        self.calls.append(("update", new.metadata.resource_version))

    async def on_delete(self, obj: V1PersistentVolumeClaim) -> None:
        self.calls.append(("delete", obj.metadata.name))

    def handler(self) -> EventHandler[V1PersistentVolumeClaim]:
        return EventHandler(
            on_add=self.on_add,
            on_update=self.on_update,
            on_delete=self.on_delete,
        )


def build_informer(
    list_method: AsyncMock | ScriptedList,
    logger: BoundLogger,
    slack_client: AsyncMock | None = None,
) -> KubernetesInformer[V1PersistentVolumeClaim]:
    return KubernetesInformer(
        list_method=list_method,
        object_type=V1PersistentVolumeClaim,
        kind="PersistentVolumeClaim",
        resync_period=timedelta(minutes=1),
        reconnect_timeout=timedelta(minutes=5),
        logger=logger,
        slack_client=slack_client,
    )


@pytest.fixture
def scripted_watch(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "voldriver.storage.kubernetes.watcher.Watch", ScriptedWatch
    )
    monkeypatch.setattr(
        "voldriver.storage.kubernetes.informer._RETRY_DELAY", timedelta(0)
    )


@pytest.mark.asyncio
async def test_relist(logger: BoundLogger) -> None:
    list_method = AsyncMock()
    informer = build_informer(list_method, logger)
    recorder = Recorder()
    informer.add_event_handler(recorder.handler())

    claims = [make_pvc("one"), make_pvc("two")]
    list_method.return_value = make_pvc_list(*claims)
    await informer._relist()
    assert recorder.calls == [("add", "one"), ("add", "two")]
    assert informer._resource_version == "10"
    assert informer.get("one-uid") is not None
    assert len(informer.list()) == 2

    # A relist reconciles the cache, reporting updates and deletions.
    recorder.calls.clear()
    claim = make_pvc("two", "2")
    list_method.return_value = make_pvc_list(claim, version="20")
    await informer._relist()
    assert recorder.calls == [("update", "2"), ("delete", "one")]
    assert informer.get("one-uid") is None
    assert informer._resource_version == "20"

    list_method.side_effect = ApiException(status=500, reason="Broken")
    with pytest.raises(KubernetesError):
        await informer._relist()


@pytest.mark.asyncio
async def test_process(logger: BoundLogger) -> None:
    informer = build_informer(AsyncMock(), logger)
    recorder = Recorder()
    informer.add_event_handler(recorder.handler())

    claim = make_pvc("claim")
    await informer.process(WatchEvent(WatchEventType.ADDED, claim))
    updated = make_pvc("claim", "2")
    await informer.process(WatchEvent(WatchEventType.MODIFIED, updated))

    # Restarted watches replay known objects as adds.
    replayed = make_pvc("claim", "3")
    await informer.process(WatchEvent(WatchEventType.ADDED, replayed))
    assert informer.get("claim-uid") == replayed

    await informer.process(WatchEvent(WatchEventType.DELETED, replayed))
    assert informer.list() == []
    assert recorder.calls == [
        ("add", "claim"),
        ("update", "2"),
        ("update", "3"),
        ("delete", "claim"),
    ]


@pytest.mark.asyncio
async def test_resync(logger: BoundLogger) -> None:
    informer = build_informer(AsyncMock(), logger)
    recorder = Recorder()
    informer.add_event_handler(recorder.handler())
    for name in ("one", "two"):
        event = WatchEvent(WatchEventType.ADDED, make_pvc(name))
        await informer.process(event)
    recorder.calls.clear()

    await informer.resync()
    assert recorder.calls == [("update", "1"), ("update", "1")]


@pytest.mark.asyncio
async def test_handler_exception(logger: BoundLogger) -> None:
    informer = build_informer(AsyncMock(), logger)
    failing = AsyncMock(side_effect=ValueError("broken handler"))
    informer.add_event_handler(EventHandler(on_add=failing, on_update=failing))
    recorder = Recorder()
    informer.add_event_handler(recorder.handler())

    # One handler failing does not stop the others or the cache update.
    await informer.process(WatchEvent(WatchEventType.ADDED, make_pvc("a")))
    failing.assert_awaited_once()
    assert recorder.calls == [("add", "a")]
    assert informer.get("a-uid") is not None


@pytest.mark.asyncio
async def test_resync_waits_for_events(logger: BoundLogger) -> None:
    informer = build_informer(AsyncMock(), logger)
    calls: list[str] = []

    async def on_add(obj: V1PersistentVolumeClaim) -> None:
        calls.append(f"add {obj.metadata.name}")

    async def on_update(
        old: V1PersistentVolumeClaim, new: V1PersistentVolumeClaim
    ) -> None:
        calls.append(f"start {new.metadata.name}")
        await asyncio.sleep(0)
        calls.append(f"end {new.metadata.name}")

    informer.add_event_handler(EventHandler(on_add, on_update))
    for name in ("one", "two"):
        event = WatchEvent(WatchEventType.ADDED, make_pvc(name))
        await informer.process(event)
    calls.clear()

    # A watch event arriving during a resync is held until it finishes.
    event = WatchEvent(WatchEventType.ADDED, make_pvc("three"))
    await asyncio.gather(informer.resync(), informer.process(event))
    assert calls == [
        "start one",
        "end one",
        "start two",
        "end two",
        "add three",
    ]


@pytest.mark.asyncio
@pytest.mark.usefixtures("scripted_watch")
async def test_start_stop(logger: BoundLogger) -> None:
    method = ScriptedList(
        [make_pvc_list(make_pvc("one"), version="10")],
        [[make_event("ADDED", make_pvc("two", "11"))]],
    )
    informer = build_informer(method, logger)
    recorder = Recorder()
    informer.add_event_handler(recorder.handler())

    await informer.start()
    assert recorder.calls == [("add", "one")]
    with pytest.raises(RuntimeError):
        await informer.start()

    async with asyncio.timeout(5):
        await method.idle.wait()
    assert recorder.calls == [("add", "one"), ("add", "two")]
    calls = method.watch_calls()
    assert calls[0]["resource_version"] == "10"
    assert calls[1]["resource_version"] == "11"

    scheduler = informer._scheduler
    watcher = informer._watcher
    assert scheduler
    assert watcher
    await informer.stop()
    assert scheduler.closed
    assert informer._scheduler is None
    assert isinstance(watcher._watch, ScriptedWatch)
    assert watcher._watch.closed

    # The cache survives and stopping again does nothing.
    assert len(informer.list()) == 2
    await informer.stop()


@pytest.mark.asyncio
@pytest.mark.usefixtures("scripted_watch")
async def test_watch_failure(logger: BoundLogger) -> None:
    method = ScriptedList(
        [
            make_pvc_list(make_pvc("one"), version="10"),
            ClientConnectionError("Connection reset"),
            make_pvc_list(make_pvc("one"), make_pvc("two"), version="20"),
        ],
        [ClientConnectionError("Connection refused")],
    )
    slack = AsyncMock()
    informer = build_informer(method, logger, slack)
    recorder = Recorder()
    informer.add_event_handler(recorder.handler())

    # Neither the failed watch nor the failed relist stops the informer.
    await informer.start()
    async with asyncio.timeout(5):
        await method.idle.wait()
    assert recorder.calls == [("add", "one"), ("update", "1"), ("add", "two")]
    calls = method.watch_calls()
    assert calls[0]["resource_version"] == "10"
    assert calls[1]["resource_version"] == "20"
    assert slack.post_uncaught_exception.await_count == 2

    await informer.stop()


@pytest.mark.asyncio
async def test_watch_volumes(
    mock_kubernetes: MockKubernetesApi, logger: BoundLogger
) -> None:
    def make_volume(name: str) -> V1PersistentVolume:
        metadata = V1ObjectMeta(name=name, uid=f"{name}-uid")
        return V1PersistentVolume(metadata=metadata)

    await mock_kubernetes.create_persistent_volume(make_volume("one"))
    api_client = ApiClient()
    informer = KubernetesInformer(
        list_method=client.CoreV1Api(api_client).list_persistent_volume,
        object_type=V1PersistentVolume,
        kind="PersistentVolume",
        resync_period=timedelta(minutes=1),
        reconnect_timeout=timedelta(seconds=10),
        logger=logger,
    )
    added = asyncio.Queue[str]()

    async def on_add(obj: Any) -> None:
        await added.put(obj.metadata.name)

    async def on_update(old: Any, new: Any) -> None:
        pass

    informer.add_event_handler(EventHandler(on_add, on_update))
    await informer.start()
    assert await added.get() == "one"

    await mock_kubernetes.create_persistent_volume(make_volume("two"))
    async with asyncio.timeout(5):
        assert await added.get() == "two"
    assert informer.get("two-uid")

    await informer.stop()
    await api_client.close()
