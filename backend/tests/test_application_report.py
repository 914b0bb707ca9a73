"""
Tests for CSV application reports
"""
import csv
import io

import pytest

from benefits_bpp.core.exceptions import ValidationError
from benefits_bpp.services.application_report import (SUMMARY_COLUMNS,
                                                       render_csv)


def _rows(text):
    return list(csv.DictReader(io.StringIO(text)))


def test_summary_report(store):
    application = store.create_application({"benefitId": "ben-001", "firstName": "Asha"})
    store.update_status(application.id, "approved", "Verified, all good")

    text = render_csv(store.export_applications("ben-001"))
    assert text.splitlines()[0] == ",".join(SUMMARY_COLUMNS)
    rows = _rows(text)
    assert rows[0]["id"] == str(application.id)
    assert rows[0]["status"] == "approved"
    assert rows[0]["remark"] == "Verified, all good"
    assert rows[0]["orderId"] == ""
    assert "firstName" not in rows[0]


def test_applicant_details_report(store):
    """One column per payload key; nested values are JSON"""
    store.create_application({"benefitId": "ben-001", "firstName": "Asha", "marks": {"math": 91}})
    store.create_application({"benefitId": "ben-001", "firstName": "Ravi", "annualIncome": "1,20,000"})

    rows = _rows(render_csv(store.export_applications("ben-001"), "applicant_details"))
    assert list(rows[0])[len(SUMMARY_COLUMNS):] == ["firstName", "marks", "annualIncome"]
    assert rows[0]["marks"] == '{"math": 91}'
    assert rows[0]["annualIncome"] == ""
    assert rows[1]["annualIncome"] == "1,20,000"


def test_empty_report_has_header_only():
    assert render_csv([]).splitlines() == [",".join(SUMMARY_COLUMNS)]


def test_unknown_report_type():
    with pytest.raises(ValidationError):
        render_csv([], "benefit_amounts")
