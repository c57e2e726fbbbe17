import asyncio
import csv
import json

from sqlalchemy import select

from app.clinical.icd11.classifier import Classification
from app.clinical.icd11.emitter import RecordEmitter
from app.clinical.icd11.sinks import CollectingRecordSink, CsvRecordSink, DatabaseRecordSink, JsonRecordSink
from app.models.crawl_frontier import CrawlFrontierItem
from app.models.icd11 import Icd11Chapter, Icd11Diagnosis
from app.schemas.icd11 import ChapterRecord, DiagnosisRecord, SectionRecord

CHAPTER = ChapterRecord(id=1, code="01", description="Certain infectious or parasitic diseases", version="2024-01")
SECTION = SectionRecord(id=1, code=None, description="Intestinal infectious diseases", chapter_id=1)
PARENT = DiagnosisRecord(id=1, code="1A00", description="Cholera", chapter_id=1, section_id=1, synonyms=["a", "b"])
CHILD = DiagnosisRecord(id=2, code="1A00.1", description="Cholera, other", chapter_id=1, parent_diagnosis_id=1)


def _feed(sink):
    for record in (CHAPTER, SECTION, PARENT, CHILD):
        sink.emit(record)
    sink.update_subclassification(1)
    sink.end()


def test_csv_sink_applies_subclassification_on_end(tmp_path):
    _feed(CsvRecordSink(tmp_path / "dump"))

    with open(tmp_path / "dump" / "diagnoses.csv", encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))
    assert [r["code"] for r in rows] == ["1A00", "1A00.1"]
    assert rows[0]["has_subclassification"] == "True"
    assert rows[1]["has_subclassification"] == "False"
    assert rows[0]["synonyms"] == "a; b"

    with open(tmp_path / "dump" / "chapters.csv", encoding="utf-8", newline="") as f:
        chapters = list(csv.DictReader(f))
    assert chapters[0]["version"] == "2024-01"
    assert (tmp_path / "dump" / "subsections.csv").exists()


def test_json_sink_streams_records_and_updates(tmp_path):
    path = tmp_path / "icd11.json"
    _feed(JsonRecordSink(path))

    items = json.loads(path.read_text(encoding="utf-8"))
    assert [i["kind"] for i in items] == ["chapter", "section", "diagnosis", "diagnosis", "diagnosis_update"]
    assert items[-1] == {"kind": "diagnosis_update", "diagnosis_id": 1, "has_subclassification": True}


def test_database_sink_inserts_and_updates(session_factory):
    sink = DatabaseRecordSink(session_factory, batch_size=2)
    _feed(sink)
    assert sink.inserted == 4

    with session_factory() as db:
        chapter = db.get(Icd11Chapter, 1)
        diagnoses = db.execute(select(Icd11Diagnosis).order_by(Icd11Diagnosis.id)).scalars().all()
    assert chapter.version == "2024-01"
    assert [d.has_subclassification for d in diagnoses] == [True, False]
    assert diagnoses[0].synonyms == "a; b"
    assert diagnoses[1].parent_diagnosis_id == 1

    marks = DatabaseRecordSink(session_factory).id_high_water_marks()
    assert marks[Classification.DIAGNOSIS] == 2
    assert marks[Classification.SUBSECTION] == 0


def test_database_sink_completes_frontier_rows_with_the_batch(session_factory):
    with session_factory() as db:
        db.add(CrawlFrontierItem(url="u/ch", status="in_progress"))
        db.commit()

    sink = DatabaseRecordSink(session_factory, batch_size=100, track_frontier=True)
    sink.emit(CHAPTER)
    sink.acknowledge("u/ch")
    assert sink.pending == 2

    with session_factory() as db:
        assert db.get(Icd11Chapter, 1) is None
        assert db.get(CrawlFrontierItem, "u/ch").status == "in_progress"

    sink.flush()
    assert sink.pending == 0
    with session_factory() as db:
        assert db.get(Icd11Chapter, 1) is not None
        assert db.get(CrawlFrontierItem, "u/ch").status == "completed"
    sink.end()


def test_database_sink_ignores_acknowledgements_without_frontier_tracking(session_factory):
    sink = DatabaseRecordSink(session_factory)
    sink.acknowledge("u/ch")
    assert sink.pending == 0
    sink.end()


class _BrokenSink(CollectingRecordSink):
    def emit(self, record):
        if record.kind == "section":
            raise OSError("disk full")
        super().emit(record)


def test_emitter_delivers_in_order_and_ends_once():
    sink = _BrokenSink()

    async def scenario():
        emitter = RecordEmitter(sink, maxsize=1)
        await emitter.start()
        for record in (CHAPTER, SECTION, PARENT, CHILD):
            await emitter.emit(record.model_copy())
        await emitter.update_subclassification(1)
        await emitter.close()
        await emitter.close()
        return emitter

    emitter = asyncio.run(scenario())
    assert [r.code for r in sink.records] == ["01", "1A00", "1A00.1"]
    assert sink.records[1].has_subclassification is True
    assert sink.ended == 1
    assert emitter.sink_errors == 1
    assert emitter.emitted == {"chapter": 1, "diagnosis": 2}
    assert emitter.updates == 1


class _BatchingSink(CollectingRecordSink):
    """Holds records until flushed, like a database batch."""

    def __init__(self, log, failing_flushes=0):
        super().__init__()
        self.log = log
        self.failing_flushes = failing_flushes

    def emit(self, record):
        super().emit(record)
        self.pending += 1
        self.log.append(f"emit:{record.code}")

    def flush(self):
        self.pending = 0
        if self.failing_flushes:
            self.failing_flushes -= 1
            raise OSError("connection lost")
        self.log.append("flush")


def _durable_recorder(log):
    durable = asyncio.Event()

    async def on_durable(url):
        log.append(f"complete:{url}")
        durable.set()

    return durable, on_durable


def test_emitter_reports_urls_only_after_flush():
    log = []

    async def scenario():
        durable, on_durable = _durable_recorder(log)
        emitter = RecordEmitter(_BatchingSink(log))
        await emitter.start(on_durable=on_durable)
        await emitter.emit(CHAPTER.model_copy(), "u/ch")
        await emitter.finish_url("u/ch")
        await asyncio.wait_for(durable.wait(), timeout=5)
        await emitter.close()
        return emitter

    emitter = asyncio.run(scenario())
    assert log == ["emit:01", "flush", "complete:u/ch"]
    assert emitter.lost_urls == []


def test_emitter_reports_unsaved_urls_when_flush_fails():
    log = []

    async def scenario():
        durable, on_durable = _durable_recorder(log)
        emitter = RecordEmitter(_BatchingSink(log, failing_flushes=1))
        await emitter.start(on_durable=on_durable)

        await emitter.emit(CHAPTER.model_copy(), "u/ch")
        await emitter.finish_url("u/ch")
        await asyncio.wait_for(durable.wait(), timeout=5)
        durable.clear()

        await emitter.emit(SECTION.model_copy(), "u/s")
        await emitter.finish_url("u/s")
        await asyncio.wait_for(durable.wait(), timeout=5)
        await emitter.close()
        return emitter

    emitter = asyncio.run(scenario())
    assert emitter.sink_errors == 1
    assert emitter.lost_urls == ["u/ch"]
    assert log == ["emit:01", "complete:u/ch", "emit:None", "flush", "complete:u/s"]


def test_emitter_contains_a_failing_record_and_keeps_delivering():
    sink = _BrokenSink()
    completed = []

    async def on_durable(url):
        completed.append(url)

    async def scenario():
        emitter = RecordEmitter(sink)
        await emitter.start(on_durable=on_durable)
        await emitter.emit(SECTION.model_copy(), "u/s")
        await emitter.finish_url("u/s")
        await emitter.emit(CHAPTER.model_copy(), "u/ch")
        await emitter.finish_url("u/ch")
        await emitter.close()
        return emitter

    emitter = asyncio.run(scenario())
    assert emitter.sink_errors == 1
    assert [r.code for r in sink.records] == ["01"]
    assert emitter.lost_urls == ["u/s"]
    assert sorted(completed) == ["u/ch", "u/s"]
