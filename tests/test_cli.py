"""Tests for the gradesync command line."""

import csv
import io
import json

from click.testing import CliRunner

from gradesync.cli import cli
from gradesync.logging import read_trace


def write_settings(tmp_path, **overrides):
    values = {
        "enabled": True,
        "format_type": "instructure_csv",
        "publish_endpoint": "http://localhost/endpoint",
    }
    values.update(overrides)
    lines = ["grade_export:"] + [f"  {key}: {json.dumps(value)}" for key, value in values.items()]
    path = tmp_path / "settings.yaml"
    path.write_text("\n".join(lines) + "\n")
    return path


class TestExportCsv:
    def test_prints_csv(self, course_file):
        result = CliRunner().invoke(cli, ["export-csv", str(course_file)])

        assert result.exit_code == 0, result.output
        rows = list(csv.DictReader(io.StringIO(result.output)))
        by_name = {r["Student"]: r for r in rows[1:]}
        assert by_name["Ada Lovelace"]["Final Score"] == "95.00"
        assert by_name["Ada Lovelace"]["Final Grade"] == "A"
        assert by_name["Ada Lovelace"]["SIS Login ID"] == "ada"
        assert by_name["Grace Hopper"]["Current Score"] == "60.00"
        assert by_name["Grace Hopper"]["Final Score"] == "30.00"

    def test_writes_file(self, course_file, tmp_path):
        output = tmp_path / "gradebook.csv"
        result = CliRunner().invoke(cli, [
            "export-csv", str(course_file), "-o", str(output), "--include-sis-id", "--sortable-names",
        ])

        assert result.exit_code == 0, result.output
        assert f"✓ Wrote {output}" in result.output
        rows = list(csv.reader(output.open()))
        assert rows[0][:5] == ["Student", "ID", "SIS User ID", "SIS Login ID", "Section"]
        assert rows[2][:4] == ["Hopper, Grace", "11", "", ""]
        assert rows[3][:4] == ["Lovelace, Ada", "10", "S10", "ada"]

    def test_failure_exits_nonzero(self, course_file):
        data = json.loads(course_file.read_text())
        data["assignments"][0]["points_possible"] = -1
        course_file.write_text(json.dumps(data))

        result = CliRunner().invoke(cli, ["export-csv", str(course_file)])

        assert result.exit_code == 1
        assert "✗ Export failed" in result.output

    def test_unknown_requester(self, course_file):
        result = CliRunner().invoke(cli, ["export-csv", str(course_file), "--user", "12345"])
        assert result.exit_code == 2
        assert "no user with id 12345" in result.output


class TestPublish:
    def test_dry_run_and_save(self, course_file, tmp_path):
        settings = write_settings(tmp_path)
        out_dir = tmp_path / "batches"
        saved = tmp_path / "saved.json"
        trace = tmp_path / "trace.jsonl"

        result = CliRunner().invoke(cli, [
            "publish", str(course_file),
            "--settings", str(settings),
            "--user", "900",
            "--dry-run", str(out_dir),
            "--save", str(saved),
            "--trace", str(trace),
        ])

        assert result.exit_code == 0, result.output
        assert "Publishing 2 enrollments via instructure_csv..." in result.output
        assert "  published: 2" in result.output
        assert f"Saved: {saved}" in result.output

        rows = list(csv.reader((out_dir / "batch_0001.csv").open()))
        assert rows[1][1] == "U1"
        assert rows[1][5] == "SEC1"
        assert rows[1][7:] == ["S10", "100", "active", "95.0", "A"]
        assert rows[2][7:] == ["", "101", "active", "30.0", "F"]

        enrollments = json.loads(saved.read_text())["enrollments"]
        assert [e["publishing_status"] for e in enrollments] == ["published", "published"]
        assert all(e["last_publish_attempt_at"] for e in enrollments)

        events = [r["type"] for r in read_trace(trace)]
        assert events[:2] == ["publish_requested", "statuses_pending"]
        assert "batch_posted" in events

    def test_wait_for_success_schedules_expiry(self, course_file, tmp_path):
        settings = write_settings(tmp_path, wait_for_success=True, success_timeout_seconds=600)

        result = CliRunner().invoke(cli, [
            "publish", str(course_file), "--settings", str(settings),
            "--user", "900", "--dry-run", str(tmp_path / "out"),
        ])

        assert result.exit_code == 0, result.output
        assert "Expiry check scheduled for" in result.output
        assert "  publishing: 2" in result.output

    def test_single_student(self, course_file, tmp_path):
        settings = write_settings(tmp_path)

        result = CliRunner().invoke(cli, [
            "publish", str(course_file), "--settings", str(settings),
            "--user", "900", "--student", "11", "--dry-run", str(tmp_path / "out"),
        ])

        assert result.exit_code == 0, result.output
        assert "Publishing 1 enrollments" in result.output
        assert "  published: 1" in result.output

    def test_refused(self, course_file, tmp_path):
        settings = write_settings(tmp_path, enabled=False)

        result = CliRunner().invoke(cli, [
            "publish", str(course_file), "--settings", str(settings), "--user", "900",
        ])

        assert result.exit_code == 1
        assert "✗ Publishing refused: final grade publishing disabled" in result.output
        assert "  error: 2" in result.output

    def test_settings_from_environment(self, course_file, tmp_path):
        result = CliRunner().invoke(
            cli,
            ["publish", str(course_file), "--user", "900", "--dry-run", str(tmp_path / "out")],
            env={
                "GRADESYNC_ENABLED": "true",
                "GRADESYNC_PUBLISH_ENDPOINT": "http://localhost/endpoint",
            },
        )

        assert result.exit_code == 0, result.output
        assert "via instructure_csv" in result.output


class TestStatusesAndFormats:
    def test_statuses(self, course_file, tmp_path):
        saved = tmp_path / "saved.json"
        runner = CliRunner()
        runner.invoke(cli, [
            "publish", str(course_file), "--settings", str(write_settings(tmp_path)),
            "--user", "900", "--dry-run", str(tmp_path / "out"), "--save", str(saved),
        ])

        result = runner.invoke(cli, ["statuses", str(saved)])

        assert result.exit_code == 0, result.output
        assert "Overall: published" in result.output
        assert "  Synced: 2" in result.output

    def test_statuses_of_fresh_course(self, course_file):
        result = CliRunner().invoke(cli, ["statuses", str(course_file)])
        assert "Overall: unpublished" in result.output
        assert "  Not Synced: 2" in result.output

    def test_formats(self):
        result = CliRunner().invoke(cli, ["formats"])
        assert result.exit_code == 0
        assert "instructure_csv" in result.output
        assert "Instructure formatted CSV" in result.output
