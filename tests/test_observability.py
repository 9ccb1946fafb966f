import io
import json
import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from observability import (
    REGISTRY,
    context,
    record_compression,
    record_photo_upload,
    record_upload_batch,
    render_metrics,
    setup_logging,
)


def _last_json_line(stream: io.StringIO) -> dict:
    return json.loads(stream.getvalue().strip().splitlines()[-1])


def test_logging_redacts_sensitive_values(monkeypatch):
    stream = io.StringIO()
    monkeypatch.setenv("LOG_FORMAT", "json")
    setup_logging(stream=stream)

    logger = logging.getLogger("test-redaction")
    logger.info("apikey=secret-key Authorization: Bearer abc.def-123")

    payload = _last_json_line(stream)
    assert "***" in payload["msg"]
    assert "secret-key" not in payload["msg"]
    assert "abc.def-123" not in payload["msg"]


def test_context_fields_are_attached(monkeypatch):
    stream = io.StringIO()
    monkeypatch.setenv("LOG_FORMAT", "json")
    setup_logging(stream=stream)

    with context(diary_id="diary-7", batch_id="b1"):
        with context(file_name="a.jpg"):
            logging.getLogger("test-context").info("inside")
        logging.getLogger("test-context").info("outer")
    logging.getLogger("test-context").info("outside")

    lines = [json.loads(line) for line in stream.getvalue().strip().splitlines()]
    inner, outer, outside = lines[-3:]
    assert inner["diary_id"] == "diary-7"
    assert inner["file_name"] == "a.jpg"
    assert outer["batch_id"] == "b1"
    assert "file_name" not in outer
    assert "diary_id" not in outside


def test_pretty_format(monkeypatch):
    stream = io.StringIO()
    monkeypatch.setenv("LOG_FORMAT", "pretty")
    setup_logging(stream=stream)

    with context(photo_id="p1"):
        logging.getLogger("test-pretty").warning("deleting")

    line = stream.getvalue().strip().splitlines()[-1]
    assert "WARNING" in line
    assert "deleting" in line
    assert "photo_id=p1" in line
    monkeypatch.setenv("LOG_FORMAT", "json")
    setup_logging(stream=io.StringIO())


def test_metrics_render_photo_counters():
    before = REGISTRY.get_sample_value("photo_compression_bytes_saved_total") or 0.0

    record_photo_upload(True)
    record_photo_upload(False)
    record_upload_batch(successful=0, failed=2, duration=0.5)
    record_compression(1000, 400)
    record_compression(100, 200)

    text = render_metrics().decode()
    assert 'photo_uploads_total{status="ok"}' in text
    assert 'photo_uploads_total{status="failed"}' in text
    assert 'photo_upload_batches_total{outcome="failed"}' in text
    assert "photo_batch_duration_seconds_count" in text
    assert REGISTRY.get_sample_value("photo_compression_bytes_saved_total") == before + 600
