"""Tests for the model artifact lifecycle manager."""

import asyncio
from pathlib import Path
from typing import Callable, Dict, List

import httpx
import pytest

from snaptag.core.errors import DownloadFailedError, InsufficientStorageError
from snaptag.core.types import ArtifactRole, ArtifactState, DownloadState, ModelArtifactSpec
from snaptag.models.artifacts import ModelArtifactManager
from snaptag.models.catalog import MODEL_SPECS, TEXT_MODEL, VISION_MODEL

PROJECTOR_BODY = b"p" * 40
MODEL_BODY = b"m" * 60


def _serve(bodies: Dict[str, bytes], requests: List[str]) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request.url.path)
        name = request.url.path.rsplit("/", 1)[-1]
        if name not in bodies:
            return httpx.Response(404)
        return httpx.Response(200, content=bodies[name])

    return handler


def _client_factory(handler) -> Callable[[], httpx.AsyncClient]:
    return lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def _first_bytes(manager: ModelArtifactManager, timeout: float = 2.0) -> None:
    """Wait until the running download has written something."""

    async def poll():
        while manager.progress == 0.0:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


DEFAULT_BODIES = {
    "mmproj-model-f16.gguf": PROJECTOR_BODY,
    "ggml-model-Q4_0.gguf": MODEL_BODY,
    "gemma-2b-it-q4_k_m.gguf": b"g" * 50,
}


@pytest.fixture
def requests() -> List[str]:
    return []


@pytest.fixture
def make_manager(tmp_path: Path, requests: List[str], plenty_of_space):
    def _make(spec: ModelArtifactSpec, handler=None, disk_usage=plenty_of_space, **kwargs):
        handler = handler or _serve(DEFAULT_BODIES, requests)
        return ModelArtifactManager(
            spec,
            tmp_path / "models",
            client_factory=_client_factory(handler),
            storage_margin_bytes=kwargs.pop("storage_margin_bytes", 0),
            disk_usage=disk_usage,
            chunk_size=kwargs.pop("chunk_size", 8),
            **kwargs,
        )

    return _make


class TestCatalog:
    """Tests for the built-in model families."""

    def test_vision_model_is_composite(self) -> None:
        assert VISION_MODEL.is_composite
        roles = [f.role for f in VISION_MODEL.files]
        assert roles == [ArtifactRole.VISION_PROJECTOR, ArtifactRole.LANGUAGE_MODEL]

    def test_text_model_single_file(self) -> None:
        assert not TEXT_MODEL.is_composite

    def test_specs_keyed_by_family(self) -> None:
        assert set(MODEL_SPECS) == {"text", "vision"}


class TestCompleteness:
    """Tests for on-disk completeness checks."""

    @pytest.mark.parametrize(
        "first,second",
        [
            (ArtifactRole.LANGUAGE_MODEL, ArtifactRole.VISION_PROJECTOR),
            (ArtifactRole.VISION_PROJECTOR, ArtifactRole.LANGUAGE_MODEL),
        ],
    )
    def test_composite_needs_both_files(self, make_manager, composite_spec, first, second) -> None:
        manager = make_manager(composite_spec)
        manager.directory.mkdir(parents=True)

        assert not manager.is_complete()
        manager.paths[first].write_bytes(b"x")
        assert not manager.is_complete()
        assert manager.has_file(first)
        assert not manager.has_file(second)
        manager.paths[second].write_bytes(b"x")
        assert manager.is_complete()

    def test_checked_on_every_call(self, make_manager, single_spec) -> None:
        manager = make_manager(single_spec)
        manager.directory.mkdir(parents=True)
        path = manager.paths[ArtifactRole.LANGUAGE_MODEL]

        path.write_bytes(b"x")
        assert manager.is_complete()
        path.unlink()
        assert not manager.is_complete()
        assert manager.state == ArtifactState.NOT_DOWNLOADED

    def test_partial_file_does_not_count(self, make_manager, single_spec) -> None:
        manager = make_manager(single_spec)
        manager.directory.mkdir(parents=True)
        (manager.directory / "gemma-2b-it-q4_k_m.gguf.part").write_bytes(b"x")

        assert not manager.is_complete()


class TestStorage:
    """Tests for free-space checks."""

    def test_required_includes_margin(self, make_manager, composite_spec) -> None:
        manager = make_manager(composite_spec, storage_margin_bytes=1_000)

        assert manager.remaining_bytes() == 100
        assert manager.required_bytes() == 1_100

    def test_required_shrinks_with_present_files(self, make_manager, composite_spec) -> None:
        manager = make_manager(composite_spec)
        manager.directory.mkdir(parents=True)
        manager.paths[ArtifactRole.LANGUAGE_MODEL].write_bytes(MODEL_BODY)

        assert manager.remaining_bytes() == 40
        assert manager.downloaded_size_bytes() == 60

    def test_available_uses_existing_ancestor(
        self, make_manager, composite_spec, plenty_of_space, tmp_path
    ) -> None:
        manager = make_manager(composite_spec)

        manager.available_bytes()

        assert plenty_of_space.paths[-1] == tmp_path

    def test_has_enough_storage(self, make_manager, composite_spec, disk_with_free) -> None:
        assert make_manager(composite_spec, disk_usage=disk_with_free(100)).has_enough_storage()
        assert not make_manager(composite_spec, disk_usage=disk_with_free(99)).has_enough_storage()

    def test_has_enough_storage_never_raises(self, make_manager, composite_spec) -> None:
        def broken(path):
            raise OSError("stat failed")

        assert make_manager(composite_spec, disk_usage=broken).has_enough_storage() is False

    def test_insufficient_storage_blocks_download(
        self, make_manager, composite_spec, requests, disk_with_free
    ) -> None:
        manager = make_manager(composite_spec, disk_usage=disk_with_free(10))

        with pytest.raises(InsufficientStorageError) as exc_info:
            asyncio.run(manager.start_download())

        assert exc_info.value.required_bytes == 100
        assert exc_info.value.available_bytes == 10
        assert requests == []
        assert manager.last_error == "insufficient storage"
        assert not manager.directory.exists()


class TestDownload:
    """Tests for start_download."""

    def test_downloads_all_files_in_order(self, make_manager, composite_spec, requests) -> None:
        manager = make_manager(composite_spec)

        asyncio.run(manager.start_download())

        assert requests == ["/mmproj-model-f16.gguf", "/ggml-model-Q4_0.gguf"]
        assert manager.paths[ArtifactRole.VISION_PROJECTOR].read_bytes() == PROJECTOR_BODY
        assert manager.paths[ArtifactRole.LANGUAGE_MODEL].read_bytes() == MODEL_BODY
        assert manager.is_complete()
        assert manager.state == ArtifactState.DOWNLOADED
        assert manager.progress == 1.0
        assert all(job.state == DownloadState.COMPLETED for job in manager.jobs)
        assert list(manager.directory.glob("*.part")) == []

    def test_progress_monotonic_from_zero_to_one(self, make_manager, composite_spec) -> None:
        manager = make_manager(composite_spec, chunk_size=10)
        values: List[float] = []
        manager.add_progress_listener(values.append)

        asyncio.run(manager.start_download())

        assert values[0] == 0.0
        assert values[-1] == 1.0
        assert values == sorted(values)
        # Projector occupies the first 40% of the bar
        assert any(v == pytest.approx(0.4) for v in values)
        assert len(values) > 4

    def test_only_missing_files_downloaded(self, make_manager, composite_spec, requests) -> None:
        manager = make_manager(composite_spec)
        manager.directory.mkdir(parents=True)
        manager.paths[ArtifactRole.VISION_PROJECTOR].write_bytes(PROJECTOR_BODY)

        asyncio.run(manager.start_download())

        assert requests == ["/ggml-model-Q4_0.gguf"]
        assert len(manager.jobs) == 1
        assert manager.jobs[0].progress_offset == 0.0
        assert manager.jobs[0].progress_scale == 1.0

    def test_complete_model_is_noop(self, make_manager, single_spec, requests) -> None:
        manager = make_manager(single_spec)
        manager.directory.mkdir(parents=True)
        manager.paths[ArtifactRole.LANGUAGE_MODEL].write_bytes(b"x")

        asyncio.run(manager.start_download())

        assert requests == []

    def test_second_start_is_noop(self, make_manager, composite_spec, requests) -> None:
        manager = make_manager(composite_spec)

        async def run():
            first = asyncio.create_task(manager.start_download())
            await asyncio.sleep(0)
            assert manager.is_downloading
            await manager.start_download()
            assert manager.is_downloading
            await first

        asyncio.run(run())

        assert requests == ["/mmproj-model-f16.gguf", "/ggml-model-Q4_0.gguf"]
        assert manager.is_complete()

    def test_concurrent_starts_transfer_once(self, make_manager, composite_spec, requests) -> None:
        manager = make_manager(composite_spec)

        async def run():
            await asyncio.gather(manager.start_download(), manager.start_download())

        asyncio.run(run())

        assert sorted(requests) == ["/ggml-model-Q4_0.gguf", "/mmproj-model-f16.gguf"]

    def test_http_error_fails_and_cleans_up(self, make_manager, composite_spec, requests) -> None:
        handler = _serve({"mmproj-model-f16.gguf": PROJECTOR_BODY}, requests)
        manager = make_manager(composite_spec, handler=handler)

        with pytest.raises(DownloadFailedError) as exc_info:
            asyncio.run(manager.start_download())

        assert "HTTP 404" in exc_info.value.reason
        assert manager.state == ArtifactState.FAILED
        assert "HTTP 404" in manager.last_error
        assert manager.has_file(ArtifactRole.VISION_PROJECTOR)
        assert not manager.has_file(ArtifactRole.LANGUAGE_MODEL)
        assert list(manager.directory.glob("*.part")) == []
        failed = [j for j in manager.jobs if j.state == DownloadState.FAILED]
        assert [j.role for j in failed] == [ArtifactRole.LANGUAGE_MODEL]

    def test_network_error_wrapped(self, make_manager, single_spec) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        manager = make_manager(single_spec, handler=handler)

        with pytest.raises(DownloadFailedError):
            asyncio.run(manager.start_download())

        assert manager.state == ArtifactState.FAILED

    def test_retry_restarts_from_zero(self, make_manager, single_spec) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request.headers.get("range"))
            if len(attempts) == 1:
                return httpx.Response(500)
            return httpx.Response(200, content=b"g" * 50)

        manager = make_manager(single_spec, handler=handler)

        with pytest.raises(DownloadFailedError):
            asyncio.run(manager.start_download())
        asyncio.run(manager.start_download())

        assert attempts == [None, None]
        assert manager.paths[ArtifactRole.LANGUAGE_MODEL].read_bytes() == b"g" * 50
        assert manager.state == ArtifactState.DOWNLOADED
        assert manager.last_error is None

    def test_progress_updates_stream(self, make_manager, composite_spec) -> None:
        manager = make_manager(composite_spec)

        async def run():
            updates: List[float] = []

            async def consume():
                async for value in manager.progress_updates():
                    updates.append(value)

            consumer = asyncio.create_task(consume())
            await asyncio.sleep(0)
            await manager.start_download()
            await asyncio.wait_for(consumer, timeout=1)
            return updates

        updates = asyncio.run(run())

        assert updates[0] == 0.0
        assert updates[-1] == 1.0

    def test_failing_listener_does_not_break_download(self, make_manager, single_spec) -> None:
        manager = make_manager(single_spec)

        def bad_listener(value: float) -> None:
            raise RuntimeError("ui gone")

        manager.add_progress_listener(bad_listener)
        asyncio.run(manager.start_download())

        assert manager.is_complete()

    def test_writes_run_in_worker_thread(self, make_manager, single_spec, monkeypatch) -> None:
        offloaded: List[str] = []
        original = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(getattr(func, "__name__", repr(func)))
            return await original(func, *args, **kwargs)

        monkeypatch.setattr("snaptag.models.artifacts.asyncio.to_thread", recording_to_thread)
        manager = make_manager(single_spec, chunk_size=10)

        asyncio.run(manager.start_download())

        assert offloaded.count("write") == 5
        assert manager.paths[ArtifactRole.LANGUAGE_MODEL].read_bytes() == b"g" * 50

    def test_chunk_size_sets_update_granularity(self, make_manager, single_spec) -> None:
        manager = make_manager(single_spec, chunk_size=25)
        values: List[float] = []
        manager.add_progress_listener(values.append)

        asyncio.run(manager.start_download())

        assert values == [0.0, 0.5, 1.0]


class TestCancel:
    """Tests for cancel_download."""

    def _slow_handler(self, gate: asyncio.Event):
        def handler(request: httpx.Request) -> httpx.Response:
            async def body():
                yield PROJECTOR_BODY[:20]
                await gate.wait()
                yield PROJECTOR_BODY[20:]

            return httpx.Response(200, headers={"content-length": "40"}, content=body())

        return handler

    def test_cancel_resets_progress_and_removes_partial(self, make_manager, composite_spec) -> None:
        values: List[float] = []

        async def run():
            gate = asyncio.Event()
            manager = make_manager(composite_spec, handler=self._slow_handler(gate))
            manager.add_progress_listener(values.append)
            download = asyncio.create_task(manager.start_download())

            await _first_bytes(manager)
            partial = manager.directory / "mmproj-model-f16.gguf.part"
            assert partial.exists()
            assert manager.current_file == "mmproj-model-f16.gguf"

            manager.cancel_download()
            await download
            return manager, partial

        manager, partial = asyncio.run(run())

        assert manager.progress == 0.0
        assert values[-1] == 0.0
        assert values[:-1] == sorted(values[:-1])
        assert max(values) > 0.0
        assert manager.state == ArtifactState.CANCELLED
        assert not manager.is_downloading
        assert not partial.exists()
        assert not manager.has_file(ArtifactRole.VISION_PROJECTOR)
        assert all(job.state == DownloadState.CANCELLED for job in manager.jobs)

    def test_restart_after_cancel(self, make_manager, composite_spec, requests) -> None:
        async def run():
            gate = asyncio.Event()
            slow = self._slow_handler(gate)
            fast = _serve(DEFAULT_BODIES, requests)
            handlers = [slow]
            manager = make_manager(composite_spec, handler=lambda r: handlers[-1](r))
            download = asyncio.create_task(manager.start_download())
            await _first_bytes(manager)
            manager.cancel_download()
            await download
            handlers.append(fast)
            await manager.start_download()
            return manager

        manager = asyncio.run(run())

        assert manager.is_complete()
        assert manager.state == ArtifactState.DOWNLOADED
        assert manager.progress == 1.0

    def test_cancel_when_idle_is_noop(self, make_manager, single_spec) -> None:
        manager = make_manager(single_spec)
        values: List[float] = []
        manager.add_progress_listener(values.append)

        manager.cancel_download()

        assert values == []
        assert manager.state == ArtifactState.NOT_DOWNLOADED


class TestImport:
    """Tests for import_model and classify."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("mmproj-model-f16.gguf", ArtifactRole.VISION_PROJECTOR),
            ("MiniCPM-V-mmproj.gguf", ArtifactRole.VISION_PROJECTOR),
            ("ggml-model-Q4_0.gguf", ArtifactRole.LANGUAGE_MODEL),
            ("minicpm-v-Q8_0.gguf", ArtifactRole.LANGUAGE_MODEL),
            ("random.gguf", None),
            ("notes.txt", None),
        ],
    )
    def test_classify_composite(self, make_manager, composite_spec, name, expected) -> None:
        assert make_manager(composite_spec).classify(name) == expected

    def test_classify_single(self, make_manager, single_spec) -> None:
        manager = make_manager(single_spec)

        assert manager.classify("my-gemma.gguf") == ArtifactRole.LANGUAGE_MODEL
        assert manager.classify("mmproj-model-f16.gguf") is None
        assert manager.classify("readme.md") is None

    def test_import_both_files(self, make_manager, composite_spec, tmp_path) -> None:
        manager = make_manager(composite_spec)
        model = tmp_path / "ggml-model-Q4_0.gguf"
        model.write_bytes(MODEL_BODY)
        projector = tmp_path / "mmproj-model-f16.gguf"
        projector.write_bytes(PROJECTOR_BODY)

        first = manager.import_model(model)
        assert first.role == ArtifactRole.LANGUAGE_MODEL
        assert not first.is_complete
        assert first.missing == [ArtifactRole.VISION_PROJECTOR]

        second = manager.import_model(projector)
        assert second.is_complete
        assert manager.is_complete()
        assert manager.paths[ArtifactRole.LANGUAGE_MODEL].read_bytes() == MODEL_BODY
        assert model.exists()

    def test_import_replaces_existing(self, make_manager, single_spec, tmp_path) -> None:
        manager = make_manager(single_spec)
        manager.directory.mkdir(parents=True)
        manager.paths[ArtifactRole.LANGUAGE_MODEL].write_bytes(b"old")
        source = tmp_path / "gemma-new.gguf"
        source.write_bytes(b"new")

        manager.import_model(source)

        assert manager.paths[ArtifactRole.LANGUAGE_MODEL].read_bytes() == b"new"
        assert list(manager.directory.glob("*.import")) == []

    def test_import_unrecognized(self, make_manager, composite_spec, tmp_path) -> None:
        source = tmp_path / "weights.bin"
        source.write_bytes(b"x")

        with pytest.raises(DownloadFailedError, match="mmproj"):
            make_manager(composite_spec).import_model(source)

    def test_import_missing_file(self, make_manager, composite_spec, tmp_path) -> None:
        with pytest.raises(DownloadFailedError, match="not found"):
            make_manager(composite_spec).import_model(tmp_path / "ggml-model-Q4_0.gguf")


class TestDelete:
    """Tests for delete_model."""

    def test_delete_removes_files_and_leftovers(self, make_manager, composite_spec) -> None:
        manager = make_manager(composite_spec)
        asyncio.run(manager.start_download())
        (manager.directory / "stale.gguf.part").write_bytes(b"x")

        manager.delete_model()

        assert not manager.has_file(ArtifactRole.LANGUAGE_MODEL)
        assert not manager.has_file(ArtifactRole.VISION_PROJECTOR)
        assert list(manager.directory.iterdir()) == []
        assert manager.state == ArtifactState.NOT_DOWNLOADED
        assert manager.progress == 0.0

    def test_delete_is_idempotent(self, make_manager, composite_spec) -> None:
        manager = make_manager(composite_spec)

        manager.delete_model()
        manager.delete_model()

        assert manager.state == ArtifactState.NOT_DOWNLOADED

    def test_delete_clears_failure(self, make_manager, single_spec) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        manager = make_manager(single_spec, handler=handler)
        with pytest.raises(DownloadFailedError):
            asyncio.run(manager.start_download())

        manager.delete_model()

        assert manager.state == ArtifactState.NOT_DOWNLOADED
        assert manager.last_error is None
