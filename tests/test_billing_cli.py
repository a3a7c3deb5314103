"""
Smoke tests for scripts/billing_cli.py against a file-backed SQLite database.
"""

import importlib.util
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from billing_kernel.db import engine as db_engine
from billing_kernel.models import Lesson, LessonParticipant, Organisation, Student

ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("billing_cli", ROOT / "scripts" / "billing_cli.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def database_url(tmp_path, cli):
    url = f"sqlite:///{tmp_path / 'billing.db'}"
    assert cli.main(["--database-url", url, "init-db"]) == 0
    yield url
    db_engine.reset_engine()


@pytest.fixture
def seeded_org(database_url):
    """An org with one adult student and one completed March lesson."""
    with db_engine.session_scope() as session:
        org = Organisation(name="CLI School", currency_code="GBP", vat_enabled=False, vat_rate=Decimal("0"))
        session.add(org)
        session.flush()
        student = Student(org_id=org.id, first_name="Cli", last_name="User", email="cli@example.com")
        session.add(student)
        session.flush()
        start = datetime(2026, 3, 2, 10, tzinfo=timezone.utc)
        lesson = Lesson(
            org_id=org.id, title="Violin", start_at=start,
            end_at=start + timedelta(minutes=30), status="completed",
        )
        session.add(lesson)
        session.flush()
        session.add(LessonParticipant(lesson_id=lesson.id, student_id=student.id))
        return str(org.id)


def _output(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


class TestBillingCli:

    def test_create_run_then_pay(self, cli, database_url, seeded_org, capsys):
        capsys.readouterr()

        code = cli.main([
            "--database-url", database_url, "create-run", "--org", seeded_org,
            "--start", "2026-03-01", "--end", "2026-03-31", "--run-type", "monthly",
        ])

        assert code == 0
        run = _output(capsys)
        assert run["status"] == "completed"
        assert run["summary"]["invoiceCount"] == 1
        (invoice_id,) = run["summary"]["invoiceIds"]

        code = cli.main([
            "--database-url", database_url, "record-payment", "--invoice", invoice_id,
            "--amount", "3000", "--method", "bank_transfer", "--reference", "TX-1",
        ])

        assert code == 0
        payment = _output(capsys)
        assert payment["status"] == "paid"
        assert payment["outstandingMinor"] == 0

    def test_error_exit_code(self, cli, database_url, capsys):
        capsys.readouterr()

        code = cli.main([
            "--database-url", database_url, "create-run",
            "--org", "00000000-0000-0000-0000-00000000abcd",
            "--start", "2026-03-01", "--end", "2026-03-31",
        ])

        assert code == 1
        assert _output(capsys)["code"] == "ORGANISATION_NOT_FOUND"

    def test_reports(self, cli, database_url, seeded_org, capsys):
        capsys.readouterr()

        assert cli.main(["--database-url", database_url, "expiring-credits", "--org", seeded_org]) == 0
        assert _output(capsys) == {"credits": []}

        assert cli.main(["--database-url", database_url, "mark-overdue", "--org", seeded_org]) == 0
        assert _output(capsys) == {"overdue": 0}
