"""Tests for the batch service, end to end over a fake backend."""

from __future__ import annotations

import pytest
from openpyxl import load_workbook

from waterfall.artifacts.builder import RESULTS_SHEET, ArtifactError
from waterfall.artifacts.store import ArtifactStore
from waterfall.config.settings import ExtractionConfig, StorageConfig, WaterfallConfig
from waterfall.extraction.backend import DocumentExtractionError
from waterfall.pipeline.models import UploadedDocument
from waterfall.pipeline.service import AnalysisService, BatchInputError
from waterfall.signals.emitter import SignalEmitter
from waterfall.signals.types import SignalType

SPEC = "Company Name: text\nTransaction Value: number"


class _Backend:
    """Answers per document content; ``None`` means the backend call fails."""

    def __init__(self, replies: dict[bytes, str | None]) -> None:
        self.replies = replies

    async def analyze(self, document, mime_type, instruction, response_schema=None):
        reply = self.replies[document]
        if reply is None:
            raise DocumentExtractionError("Backend request failed: 529 overloaded")
        return reply


class _NoTimers:
    def call_later(self, delay, callback):
        class _Handle:
            def cancel(self) -> None:
                pass

        return _Handle()


async def _no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def config(tmp_path):
    return WaterfallConfig(
        extraction=ExtractionConfig(inter_call_delay_s=1.0, document_timeout_s=5),
        storage=StorageConfig(
            upload_dir=tmp_path / "uploads",
            output_dir=tmp_path / "outputs",
            retention_s=3600,
        ),
    )


@pytest.fixture
def store():
    return ArtifactStore(retention_s=3600, scheduler=_NoTimers())


def _upload(tmp_path, name: str, content: bytes) -> UploadedDocument:
    upload_dir = tmp_path / "uploads"
    upload_dir.mkdir(exist_ok=True)
    path = upload_dir / f"spool_{name}"
    path.write_bytes(content)
    return UploadedDocument(label=name, path=path)


class TestRunBatchExtraction:
    @pytest.mark.asyncio
    async def test_end_to_end_with_one_failed_document(self, tmp_path, config, store):
        backend = _Backend(
            {
                b"doc-one": '{"Company Name":"Acme","Transaction Value":"$5,000,000"}',
                b"doc-two": None,
            }
        )
        service = AnalysisService(config, backend, store, sleep=_no_sleep)
        documents = [
            _upload(tmp_path, "doc1.pdf", b"doc-one"),
            _upload(tmp_path, "doc2.pdf", b"doc-two"),
        ]

        response = await service.run_batch_extraction(documents, SPEC, run_id="run_e2e")

        assert response.run_id == "run_e2e"
        assert response.documents_processed == 2
        assert response.download_reference == "/api/v1/analyses/run_e2e/download"

        path = service.download_artifact("run_e2e")
        assert path is not None
        rows = list(load_workbook(path)[RESULTS_SHEET].iter_rows(values_only=True))
        assert len(rows) == 3
        assert rows[1] == ("doc1.pdf", "Acme", 5000000)
        assert rows[2] == ("doc2.pdf", "Error", "Error")

        assert not any(document.path.exists() for document in documents)

    @pytest.mark.asyncio
    async def test_generates_run_id(self, tmp_path, config, store):
        backend = _Backend({b"x": '{"Company Name": "X"}'})
        service = AnalysisService(config, backend, store, sleep=_no_sleep)

        response = await service.run_batch_extraction([_upload(tmp_path, "x.pdf", b"x")], SPEC)

        assert len(response.run_id) == 32
        assert store.get(response.run_id).document_count == 1

    @pytest.mark.asyncio
    async def test_rejects_empty_batch(self, config, store):
        service = AnalysisService(config, _Backend({}), store, sleep=_no_sleep)
        with pytest.raises(BatchInputError):
            await service.run_batch_extraction([], SPEC)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("spec", ["", "\n\n", "- \n* "])
    async def test_rejects_empty_schema_and_cleans_uploads(self, tmp_path, config, store, spec):
        service = AnalysisService(config, _Backend({}), store, sleep=_no_sleep)
        document = _upload(tmp_path, "a.pdf", b"a")

        with pytest.raises(BatchInputError):
            await service.run_batch_extraction([document], spec)

        assert not document.path.exists()
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_artifact_failure_surfaces_as_batch_failure(self, tmp_path, config, store):
        blocker = tmp_path / "blocked"
        blocker.write_text("not a directory")
        config.storage.output_dir = blocker
        service = AnalysisService(config, _Backend({b"a": "{}"}), store, sleep=_no_sleep)
        signals = SignalEmitter(run_id="run_fail")
        document = _upload(tmp_path, "a.pdf", b"a")

        with pytest.raises(ArtifactError):
            await service.run_batch_extraction(
                [document], SPEC, run_id="run_fail", signals=signals
            )

        assert signals.signals[-1].signal_type == SignalType.BATCH_FAILED
        assert not document.path.exists()
        assert service.download_artifact("run_fail") is None

    @pytest.mark.asyncio
    async def test_signals_cover_the_run(self, tmp_path, config, store):
        backend = _Backend({b"a": '{"Company Name": "A"}'})
        service = AnalysisService(config, backend, store, sleep=_no_sleep)
        signals = SignalEmitter(run_id="run_sig")

        await service.run_batch_extraction(
            [_upload(tmp_path, "a.pdf", b"a")], SPEC, run_id="run_sig", signals=signals
        )

        types = [s.signal_type for s in signals.signals]
        assert types[0] == SignalType.BATCH_STARTED
        assert SignalType.ARTIFACT_BUILT in types
        assert types[-1] == SignalType.BATCH_COMPLETE

    @pytest.mark.asyncio
    async def test_ledger_is_retained_with_the_workbook(self, tmp_path, config, store):
        backend = _Backend({b"a": '{"Company Name": "A"}', b"b": None})
        service = AnalysisService(config, backend, store, sleep=_no_sleep)
        documents = [_upload(tmp_path, "a.pdf", b"a"), _upload(tmp_path, "b.pdf", b"b")]

        await service.run_batch_extraction(documents, SPEC, run_id="run_ledger")

        ledger = config.storage.output_dir / "metric_waterfall_run_ledger.signals.jsonl"
        assert store.get("run_ledger").ledger_path == ledger
        signals = service.run_signals("run_ledger")
        assert [s.signal_type for s in signals] == [
            SignalType.BATCH_STARTED,
            SignalType.DOCUMENT_STARTED,
            SignalType.DOCUMENT_EXTRACTED,
            SignalType.DOCUMENT_STARTED,
            SignalType.DOCUMENT_FAILED,
            SignalType.ARTIFACT_BUILT,
            SignalType.BATCH_COMPLETE,
        ]
        assert [s.sequence for s in signals] == list(range(1, 8))
        assert signals[-1].payload["failed_documents"] == 1

        later = service.run_signals("run_ledger", after=5)
        assert [s.sequence for s in later] == [6, 7]

        store.evict("run_ledger")
        assert not ledger.exists()
        assert service.run_signals("run_ledger") is None

    @pytest.mark.asyncio
    async def test_failed_batch_discards_its_ledger(self, tmp_path, config, store):
        service = AnalysisService(config, _Backend({}), store, sleep=_no_sleep)

        with pytest.raises(BatchInputError):
            await service.run_batch_extraction(
                [_upload(tmp_path, "a.pdf", b"a")], "\n", run_id="run_empty"
            )

        assert not service.ledger_path("run_empty").exists()
        assert service.run_signals("run_empty") is None

    @pytest.mark.asyncio
    async def test_rejects_run_id_already_registered(self, tmp_path, config, store):
        backend = _Backend({b"a": '{"Company Name": "A"}', b"b": '{"Company Name": "B"}'})
        service = AnalysisService(config, backend, store, sleep=_no_sleep)
        await service.run_batch_extraction(
            [_upload(tmp_path, "a.pdf", b"a")], SPEC, run_id="run_dup"
        )
        path = service.download_artifact("run_dup")
        ledger = service.ledger_path("run_dup")
        second = _upload(tmp_path, "b.pdf", b"b")

        with pytest.raises(BatchInputError):
            await service.run_batch_extraction([second], SPEC, run_id="run_dup")

        assert not second.path.exists()
        assert service.download_artifact("run_dup") == path
        rows = list(load_workbook(path)[RESULTS_SHEET].iter_rows(values_only=True))
        assert rows[1][1] == "A"
        assert ledger.exists()
        assert service.run_signals("run_dup")[-1].signal_type == SignalType.BATCH_COMPLETE

    @pytest.mark.asyncio
    async def test_caller_signals_without_ledger(self, tmp_path, config, store):
        backend = _Backend({b"a": '{"Company Name": "A"}'})
        service = AnalysisService(config, backend, store, sleep=_no_sleep)

        await service.run_batch_extraction(
            [_upload(tmp_path, "a.pdf", b"a")],
            SPEC,
            run_id="run_mem",
            signals=SignalEmitter(run_id="run_mem"),
        )

        assert service.run_signals("run_mem") == []


def test_download_unknown_run(config, store):
    service = AnalysisService(config, _Backend({}), store, sleep=_no_sleep)
    assert service.download_artifact("nope") is None
