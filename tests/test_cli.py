"""Tests for the command line interface."""

import json

import pytest

from conftest import MONDAY, PERIOD, at
from workforce_engine.cli import WorkforceCli, parse_csv
from workforce_engine.engine import WorkforceEngine


@pytest.fixture
def cli(session_factory, directory) -> WorkforceCli:
    return WorkforceCli(session_factory=session_factory, directory=directory)


def seed_worked_day(session_factory, directory, user_id="alice"):
    with session_factory() as session:
        engine = WorkforceEngine(session, directory)
        engine.check_in(user_id, MONDAY, at(MONDAY, 9, 0))
        engine.check_out(user_id, MONDAY, at(MONDAY, 17, 0))
        session.commit()


class TestParsing:
    """Argument helpers."""

    def test_parse_csv(self):
        assert parse_csv("alice, bob,,carol ") == ["alice", "bob", "carol"]

    def test_no_command(self, cli, capsys):
        assert cli.run([]) == 1

    def test_bad_period_rejected(self, cli):
        with pytest.raises(SystemExit):
            cli.run(["summary", "--period", "2024-13", "--employee", "alice"])


class TestCommands:
    """Commands against an injected database."""

    def test_init_db(self, cli, capsys):
        assert cli.run(["init-db"]) == 0
        assert "Schema created" in capsys.readouterr().out

    def test_lock_and_summary(self, cli, session_factory, directory, capsys):
        seed_worked_day(session_factory, directory)

        assert cli.run(["lock-period", "--actor", "hr", "--period", PERIOD, "--employees", "alice"]) == 0
        assert "Locked:" in capsys.readouterr().out

        assert cli.run(["summary", "--period", PERIOD, "--employee", "alice"]) == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["locked"] is True
        assert summary["attendance"]["present"] == 1

    def test_lock_with_failures_exits_3(self, cli, session_factory, directory):
        with session_factory() as session:
            WorkforceEngine(session, directory).check_in("alice", MONDAY, at(MONDAY, 9, 0))
            session.commit()

        code = cli.run(["lock-period", "--actor", "hr", "--period", PERIOD, "--employees", "alice,bob"])

        assert code == 3

    def test_engine_error_exits_2(self, cli, capsys):
        code = cli.run(
            ["unlock-period", "--actor", "hr", "--period", PERIOD, "--employee", "alice", "--reason", "x"]
        )

        assert code == 2
        assert "ERROR [permission_denied]" in capsys.readouterr().err

    def test_clear_requires_token(self, cli, session_factory, directory, capsys):
        seed_worked_day(session_factory, directory)

        code = cli.run(
            ["clear-period", "--actor", "admin", "--period", PERIOD, "--employee", "alice", "--confirm", "yes"]
        )
        assert code == 2

        code = cli.run(
            ["clear-period", "--actor", "admin", "--period", PERIOD, "--employee", "alice", "--confirm", "DELETE"]
        )
        assert code == 0
        assert "Attendance rows: 1" in capsys.readouterr().out

    def test_import_and_dedupe(self, cli, tmp_path, capsys):
        path = tmp_path / "records.json"
        path.write_text(
            json.dumps(
                [
                    {"external_id": "L-1", "email": "a@example.com", "created_at": "2024-03-01T10:00:00"},
                    {"external_id": "L-1", "email": "a@example.com", "created_at": "2024-03-02T10:00:00"},
                ]
            ),
            encoding="utf-8",
        )

        assert cli.run(["import-records", "--actor", "hr", "--file", str(path)]) == 0
        assert cli.run(["dedupe-records", "--actor", "admin", "--dry-run"]) == 0
        assert "[DRY RUN] Would delete 1" in capsys.readouterr().out

        assert cli.run(["dedupe-records", "--actor", "admin"]) == 0
        assert "Deleted 1 duplicate" in capsys.readouterr().out
        assert cli.run(["dedupe-records", "--actor", "admin"]) == 0
        assert "Deleted 0 duplicate" in capsys.readouterr().out
