# erp_portal/utils/list_renderer.py
"""
Row view-models for the list pages.

Primary cells are filled straight from the records the page already fetched.
Cells that need a second lookup (subject list, fee summary) start as
"Loading…" and are resolved one task per cell by `enrich_rows`. Cells resolve
independently and in no particular order; each task only ever touches its own
cell.
"""
from __future__ import annotations

import logging
from concurrent.futures import as_completed
from typing import Callable, Dict, List

from erp_portal.utils.errors import AuthExpired, ErpError
from erp_portal.utils.fees import calculate_total_fee

logger = logging.getLogger(__name__)

LOADING = "Loading…"
SUBJECT_LIMIT = 3

ENRICHMENT_ERRORS = {
    "subjects": "Error Loading Subjects",
    "fee_summary": "Error Loading Fees",
}


class EnrichmentCell:
    def __init__(self, name, lookup_id):
        self.name = name
        self.lookup_id = lookup_id
        self.state = "loading"
        self.value = LOADING

    def resolve(self, value):
        self.state = "ready"
        self.value = value

    def fail(self, message):
        self.state = "error"
        self.value = message

    def as_dict(self):
        return {"state": self.state, "value": self.value}


class ListRow:
    def __init__(self, record_id, cells, enrichments=None):
        self.record_id = record_id
        self.cells = cells
        self.enrichments = {cell.name: cell for cell in (enrichments or [])}

    def __getitem__(self, name):
        if name in self.enrichments:
            return self.enrichments[name].value
        return self.cells[name]

    def pending(self):
        return [cell for cell in self.enrichments.values() if cell.state == "loading"]

    def as_dict(self):
        data = {"id": self.record_id}
        data.update(self.cells)
        for name, cell in self.enrichments.items():
            data[name] = cell.as_dict()
        return data


# ----------------------------------------------------------------------
# Summaries stored in / derived from the lookup caches
# ----------------------------------------------------------------------
def subjects_summary(subjects, limit=SUBJECT_LIMIT):
    if not isinstance(subjects, list) or not subjects:
        return "No Subjects"
    codes = [s.get("subject_code") or "N/C" for s in subjects[:limit]]
    text = ", ".join(codes)
    if len(subjects) > limit:
        text += f", ...and {len(subjects) - limit} more"
    return text


def fee_structure_summary(structure, format_currency=None):
    if not structure:
        return "N/A"
    total = calculate_total_fee(structure)
    amount = format_currency(total) if format_currency else total
    name = structure.get("structure_name") or "Fee Structure"
    return f"{name} ({amount})"


def course_label(course):
    if not course:
        return None
    if isinstance(course, dict):
        name = course.get("name") or course.get("course_name")
        if name and course.get("course_code") and "(" not in name:
            name = f"{name} ({course['course_code']})"
        return name
    return str(course)


# ----------------------------------------------------------------------
# Students
# ----------------------------------------------------------------------
def student_id_of(student):
    return str(student.get("student_id") or student.get("id") or "")


def build_student_rows(students, course_lookup=None, format_currency=None):
    """
    Primary rows for the student table. `course_lookup` maps course id to a
    course entry and is only used when the record carries no course_batch.
    """
    rows = []
    for student in students:
        sid = student_id_of(student)
        course_id = student.get("course_id")

        course_batch = student.get("course_batch")
        if not course_batch:
            course_name = student.get("course_name")
            if not course_name and course_lookup is not None and course_id:
                course_name = course_label(course_lookup.get(str(course_id)))
            batch_name = student.get("batch_name")
            if course_name or batch_name:
                course_batch = f"{course_name or 'N/A'} - {batch_name or 'N/A'}"

        fees_due = student.get("total_fees_due")
        if fees_due not in (None, ""):
            try:
                fees_due = format_currency(fees_due) if format_currency else f"{float(fees_due):.2f}"
            except (TypeError, ValueError):
                fees_due = "N/A"
        else:
            fees_due = "N/A"

        status = student.get("status") or "Pending"
        cells = {
            "enrollment_no": student.get("enrollment_no") or "N/A",
            "admission_id": student.get("admission_id") or "N/A",
            "full_name": f"{student.get('first_name') or ''} {student.get('last_name') or ''}".strip(),
            "course_batch": course_batch or "N/A",
            "fees_structure": student.get("fees_structure") or "N/A",
            "fees_due": fees_due,
            "email": student.get("email") or "N/A",
            "phone_number": student.get("phone_number") or "N/A",
            "status": status,
            "status_class": f"status-{status.lower()}",
        }

        enrichments = [EnrichmentCell("subjects", course_id)] if course_id else []
        if student.get("total_fees_due") in (None, "") and student.get("fee_structure_id"):
            enrichments.append(EnrichmentCell("fee_summary", student["fee_structure_id"]))
        if not course_id:
            cells["subjects"] = "N/A"

        rows.append(ListRow(sid, cells, enrichments))
    return rows


def enrich_rows(rows: List[ListRow], resolvers: Dict[str, Callable], executor=None) -> List[tuple]:
    """
    Resolve every pending enrichment cell; returns (record_id, cell) pairs in
    completion order.
    """
    tasks = [(row, cell) for row in rows for cell in row.pending() if cell.name in resolvers]
    completed = []

    def _resolve(row, cell):
        try:
            cell.resolve(resolvers[cell.name](cell.lookup_id))
        except AuthExpired:
            raise
        except ErpError as e:
            logger.warning("⚠️ %s enrichment failed for %s: %s", cell.name, row.record_id, e)
            cell.fail(ENRICHMENT_ERRORS.get(cell.name, "Error"))
        return row.record_id, cell.name

    if executor is None:
        for row, cell in tasks:
            completed.append(_resolve(row, cell))
        return completed

    futures = [executor.submit(_resolve, row, cell) for row, cell in tasks]
    for future in as_completed(futures):
        completed.append(future.result())
    return completed


# ----------------------------------------------------------------------
# Filtering and sorting
# ----------------------------------------------------------------------
def filter_students(students, search="", course_id="", batch_id="", status=""):
    term = (search or "").strip().lower()

    def matches(student):
        if term:
            haystack = [
                student.get("first_name"),
                student.get("last_name"),
                student.get("admission_id"),
                student.get("email"),
            ]
            if not any(term in str(v).lower() for v in haystack if v):
                return False
        if course_id and str(student.get("course_id")) != str(course_id):
            return False
        if batch_id and str(student.get("batch_id")) != str(batch_id):
            return False
        if status and student.get("status") != status:
            return False
        return True

    return [s for s in students if matches(s)]


def _is_blank(value):
    return value is None or value == ""


def _sort_key(value):
    try:
        return (0, float(value))
    except (TypeError, ValueError):
        return (1, str(value))


def sort_records(records, column="admission_id", direction="asc"):
    """Numbers before text; blank values go last in either direction."""
    filled = [r for r in records if not _is_blank(r.get(column))]
    blanks = [r for r in records if _is_blank(r.get(column))]
    filled.sort(key=lambda r: _sort_key(r.get(column)), reverse=(direction == "desc"))
    return filled + blanks


def next_sort_direction(current_column, current_direction, column):
    if column == current_column:
        return "desc" if current_direction == "asc" else "asc"
    return "asc"
