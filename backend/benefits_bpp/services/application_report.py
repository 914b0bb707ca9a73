"""
CSV reports over the applications of one benefit
"""
import csv
import io
import json
from typing import Any, Dict, List, Sequence

from benefits_bpp.core.exceptions import ValidationError
from benefits_bpp.models.application import Application

SUMMARY_COLUMNS = [
    "id",
    "benefitId",
    "orderId",
    "status",
    "remark",
    "eligibilityStatus",
    "createdAt",
    "updatedAt",
]

REPORT_TYPES = ("summary", "applicant_details")


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value


def _payload_columns(applications: Sequence[Application]) -> List[str]:
    """Every applicationData key, in first-seen order"""
    columns: Dict[str, None] = {}
    for application in applications:
        for key in (application.application_data or {}):
            if key not in SUMMARY_COLUMNS:
                columns.setdefault(key, None)
    return list(columns)


def render_csv(applications: Sequence[Application], report_type: str = "summary") -> str:
    """
    Render applications as CSV text with a header row

    summary carries the application columns only; applicant_details adds one
    column per applicationData key, left empty where an application lacks it.

    Raises:
        ValidationError: unknown report type
    """
    if report_type not in REPORT_TYPES:
        raise ValidationError(f"Unknown report type '{report_type}'. Expected one of: {', '.join(REPORT_TYPES)}")

    extra = _payload_columns(applications) if report_type == "applicant_details" else []
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=SUMMARY_COLUMNS + extra, extrasaction="ignore")
    writer.writeheader()
    for application in applications:
        row = {column: _cell(value) for column, value in application.to_dict().items()}
        payload = application.application_data or {}
        row.update({key: _cell(payload.get(key)) for key in extra})
        writer.writerow(row)
    return output.getvalue()
