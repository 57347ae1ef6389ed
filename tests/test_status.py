"""
Status record reading and progress normalization.
"""

import json
from datetime import datetime, timezone

import pytest

import pipewatch.settings as default_settings
from pipewatch.local.errors import StatusParseError
from pipewatch.local.status import ProgressShape, StatusReader, normalize_progress, parse_record, parse_timestamp


class TestStatusReader:

    def test_missing_file_is_absent(self, tmp_path):
        assert StatusReader(tmp_path / "pipeline-state.json").read() is None

    def test_corrupt_file_raises_parse_error(self, tmp_path):
        path = tmp_path / "pipeline-state.json"
        path.write_text("{not json")
        with pytest.raises(StatusParseError):
            StatusReader(path).read()

    def test_non_object_raises_parse_error(self, tmp_path):
        path = tmp_path / "pipeline-state.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(StatusParseError):
            StatusReader(path).read()

    def test_reads_full_record(self, tmp_path):
        path = tmp_path / "pipeline-state.json"
        path.write_text(json.dumps({
            "status": "failed",
            "exit_code": 75,
            "current_step": "DEV",
            "current_feature": "deals",
            "started_at": "2024-05-01T10:00:00Z",
            "last_update": "2024-05-01T11:30:00Z",
            "pid": 4242,
            "error": "quota",
            "duration": 125,
        }))
        record = StatusReader(path).read()
        assert record.status == "failed"
        assert record.exit_code == 75
        assert record.current_step == "DEV"
        assert record.feature == "deals"
        assert record.pid == 4242
        assert record.error == "quota"
        assert record.duration == 125
        assert record.last_update == datetime(2024, 5, 1, 11, 30, tzinfo=timezone.utc)

    def test_reading_never_writes(self, tmp_path):
        path = tmp_path / "pipeline-state.json"
        path.write_text('{"status": "running"}')
        before = path.stat().st_mtime_ns
        StatusReader(path).read()
        assert path.stat().st_mtime_ns == before


class TestParseRecord:

    def test_feature_falls_back_to_feature_then_unknown(self):
        assert parse_record({"status": "running", "feature": "x"}).feature == "x"
        assert parse_record({"status": "running"}).feature == "unknown"

    def test_bad_optional_fields_become_none(self):
        record = parse_record({"status": "running", "pid": "abc", "exit_code": None, "last_update": "yesterday"})
        assert record.pid is None
        assert record.exit_code is None
        assert record.last_update is None

    def test_naive_timestamp_is_made_aware(self):
        parsed = parse_timestamp("2024-05-01T10:00:00")
        assert parsed.tzinfo is not None


class TestProgressNormalization:

    def test_step_objects(self):
        progress = normalize_progress({"steps": [
            {"name": "PM", "status": "completed"},
            {"name": "DEV", "status": "running"},
            {"name": "QA", "status": "pending"},
        ]})
        assert progress.shape == ProgressShape.STEP_OBJECTS
        assert progress.steps == ("PM", "DEV", "QA")
        assert progress.completed == frozenset({"PM"})

    def test_completed_names_as_string(self):
        progress = normalize_progress({"steps_completed": "PM DR-SPEC  DEV"})
        assert progress.shape == ProgressShape.COMPLETED_NAMES
        assert progress.steps == tuple(default_settings.DEFAULT_PIPELINE_STEPS)
        assert progress.completed == frozenset({"PM", "DR-SPEC", "DEV"})

    def test_completed_names_as_list(self):
        progress = normalize_progress({"steps_completed": ["PM", "SEED"]})
        assert progress.completed == frozenset({"PM", "SEED"})

    def test_completed_names_win_over_step_status(self):
        progress = normalize_progress({
            "steps": [{"name": "A", "status": "completed"}, {"name": "B"}],
            "steps_completed": ["B"],
        })
        assert progress.steps == ("A", "B")
        assert progress.completed == frozenset({"B"})

    def test_no_progress(self):
        progress = normalize_progress({})
        assert progress.shape == ProgressShape.NONE
        assert progress.completed == frozenset()
