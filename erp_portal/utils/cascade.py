# erp_portal/utils/cascade.py
"""
Dependent dropdown state machines.

CascadingFormController drives Course -> Batch -> (Fee Structure, Subjects) on
the add/edit student pages. MarkEntryController drives Schedule -> Enrollments
on the mark entry page.

Both work on plain component objects (SelectField, DisplayRegion) instead of
page elements, so the routes render them through templates and the JSON
endpoints hand them to the page script as dicts.

Every selection takes a Ticket stamped with the current generation. A result
that comes back for an older ticket is dropped, so a slow response for a
course the user has already moved away from never overwrites newer state.
"""
from __future__ import annotations

import logging
from collections import namedtuple
from typing import Optional

from erp_portal.utils.errors import AuthExpired, ErpError, NetworkError, NotFound, ValidationError
from erp_portal.utils.fees import calculate_total_fee, fee_breakdown

logger = logging.getLogger(__name__)

ACADEMICS_API = "/api/academicswithfees"

WAITING_FOR_COURSE = "-- Waiting for Course --"
LOADING_BATCHES = "Loading batches..."
SELECT_BATCH = "-- Select Batch --"
NO_BATCHES = "-- No batches found --"
BATCH_ERROR = "Error loading batches"

FEE_IDLE = "Fee structure details will appear here upon Course and Batch selection."
SUBJECTS_IDLE = "Subjects assigned to this Course will appear here."

STATE_NO_COURSE = "NoCourse"
STATE_BATCHES_EMPTY = "CourseSelected(batches=∅)"
STATE_BATCHES_LOADED = "CourseSelected(batches=loaded)"

Ticket = namedtuple("Ticket", "generation batch_generation course_id batch_id")
ScheduleTicket = namedtuple("ScheduleTicket", "generation schedule_id")


class SelectField:
    def __init__(self, name, placeholder, disabled=True):
        self.name = name
        self.placeholder = placeholder
        self.options = []
        self.value = ""
        self.disabled = disabled

    def show_placeholder(self, text, disabled=True):
        self.options = []
        self.value = ""
        self.placeholder = text
        self.disabled = disabled

    def populate(self, options, placeholder):
        self.options = list(options)
        self.value = ""
        self.placeholder = placeholder
        self.disabled = False

    def has_option(self, value):
        value = str(value)
        return any(opt["value"] == value for opt in self.options)

    def select(self, value):
        value = str(value or "")
        if value and not self.has_option(value):
            raise ValidationError(f"'{value}' is not an available option for {self.name}.")
        self.value = value

    def as_dict(self):
        return {
            "name": self.name,
            "placeholder": self.placeholder,
            "options": self.options,
            "value": self.value,
            "disabled": self.disabled,
        }


class DisplayRegion:
    """A panel that shows idle text, a loading note, content, or an error string."""

    def __init__(self, name, idle_text):
        self.name = name
        self.idle_text = idle_text
        self.reset()

    def reset(self):
        self.state = "idle"
        self.message = self.idle_text
        self.items = []
        self.extra = {}

    def loading(self, message):
        self.state = "loading"
        self.message = message
        self.items = []
        self.extra = {}

    def show(self, items, message="", **extra):
        self.state = "ready"
        self.message = message
        self.items = list(items)
        self.extra = extra

    def empty(self, message):
        self.state = "empty"
        self.message = message
        self.items = []
        self.extra = {}

    def error(self, message):
        self.state = "error"
        self.message = message
        self.items = []
        self.extra = {}

    def as_dict(self):
        data = {"name": self.name, "state": self.state, "message": self.message, "items": self.items}
        data.update(self.extra)
        return data


def batch_option(batch):
    value = batch.get("id") or batch.get("batch_id")
    label = batch.get("batch_name") or "Unnamed batch"
    if batch.get("batch_code"):
        label = f"{label} ({batch['batch_code']})"
    return {"value": str(value), "label": label}


def course_option(course):
    value = course.get("id") or course.get("course_id")
    label = course.get("course_name") or "Unnamed course"
    if course.get("course_code"):
        label = f"{label} ({course['course_code']})"
    return {"value": str(value), "label": label}


class CascadingFormController:
    def __init__(self, api, subjects_cache=None, executor=None):
        self.api = api
        self.subjects_cache = subjects_cache
        self.executor = executor

        self.course_id = ""
        self.batch_id = ""
        self.generation = 0
        self.batch_generation = 0

        self.batch = SelectField("batch_id", WAITING_FOR_COURSE)
        self.fee = DisplayRegion("fee-structure-display", FEE_IDLE)
        self.subjects = DisplayRegion("subjects-display", SUBJECTS_IDLE)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self):
        if not self.course_id:
            return STATE_NO_COURSE
        return STATE_BATCHES_LOADED if self.batch.options else STATE_BATCHES_EMPTY

    def is_current(self, ticket, scope="course"):
        if ticket.generation != self.generation:
            return False
        if scope == "batch":
            return ticket.batch_generation == self.batch_generation
        return True

    def _stale(self, ticket, what):
        logger.info("⏭️ Dropping stale %s result for course=%s batch=%s", what, ticket.course_id, ticket.batch_id)
        return False

    # ------------------------------------------------------------------
    # Course transition
    # ------------------------------------------------------------------
    def begin_course(self, course_id) -> Ticket:
        self.generation += 1
        self.batch_generation += 1
        self.course_id = str(course_id or "")
        self.batch_id = ""

        if self.course_id:
            self.batch.show_placeholder(LOADING_BATCHES)
        else:
            self.batch.show_placeholder(WAITING_FOR_COURSE)
        self.fee.reset()
        self.subjects.reset()
        return Ticket(self.generation, self.batch_generation, self.course_id, "")

    def apply_batches(self, ticket, batches=None, error=None) -> bool:
        if not self.is_current(ticket):
            return self._stale(ticket, "batch list")

        if error is not None:
            self.batch.show_placeholder(BATCH_ERROR)
        elif isinstance(batches, list) and batches:
            self.batch.populate([batch_option(b) for b in batches], SELECT_BATCH)
        else:
            self.batch.show_placeholder(NO_BATCHES)
        return True

    def apply_subjects(self, ticket, subjects=None, error=None) -> bool:
        if not self.is_current(ticket):
            return self._stale(ticket, "subjects")

        if error is not None:
            if isinstance(error, NetworkError):
                self.subjects.error("A network error occurred while retrieving subjects.")
            else:
                self.subjects.error(f"Error fetching subjects: {error}")
        elif isinstance(subjects, list) and subjects:
            items = [
                {"name": s.get("subject_name") or "N/A", "code": s.get("subject_code") or "N/C"}
                for s in subjects
            ]
            self.subjects.show(items, message=f"Assigned Subjects ({len(items)})")
        else:
            self.subjects.empty("No subjects are currently assigned to this course.")
        return True

    def _fetch_batches(self, ticket):
        try:
            batches = self.api.get_json(f"{ACADEMICS_API}/courses/{ticket.course_id}/batches")
        except AuthExpired:
            raise
        except ErpError as e:
            logger.error("❌ Failed to load batches for course %s: %s", ticket.course_id, e)
            return self.apply_batches(ticket, error=e)
        return self.apply_batches(ticket, batches)

    def _fetch_subjects(self, ticket):
        try:
            if self.subjects_cache is not None:
                subjects = self.subjects_cache.get(ticket.course_id)
            else:
                subjects = self.api.get_json(f"{ACADEMICS_API}/courses/{ticket.course_id}/subjects")
        except AuthExpired:
            raise
        except ErpError as e:
            logger.error("❌ Failed to load subjects for course %s: %s", ticket.course_id, e)
            return self.apply_subjects(ticket, error=e)
        return self.apply_subjects(ticket, subjects)

    def select_course(self, course_id) -> Ticket:
        ticket = self.begin_course(course_id)
        if not ticket.course_id:
            return ticket

        self.subjects.loading("Fetching assigned subjects...")
        self._run([lambda: self._fetch_batches(ticket), lambda: self._fetch_subjects(ticket)])
        return ticket

    # ------------------------------------------------------------------
    # Batch transition
    # ------------------------------------------------------------------
    def begin_batch(self, batch_id) -> Ticket:
        if not self.course_id or self.batch.disabled:
            raise ValidationError("Select a course before choosing a batch.")
        self.batch.select(batch_id)

        self.batch_generation += 1
        self.batch_id = self.batch.value
        if self.batch_id:
            self.fee.loading("Fetching fee structure...")
        else:
            self.fee.reset()
        return Ticket(self.generation, self.batch_generation, self.course_id, self.batch_id)

    def apply_fee_structure(self, ticket, structure=None, error=None) -> bool:
        if not self.is_current(ticket, scope="batch"):
            return self._stale(ticket, "fee structure")

        if error is not None:
            if isinstance(error, NotFound):
                self.fee.empty("⚠️ No Fee Structure found for this Course/Batch combination.")
            elif isinstance(error, NetworkError):
                self.fee.error("A server error occurred while retrieving fees.")
            else:
                self.fee.error(f"Error fetching fee: {error}")
            return True

        structure = structure or {}
        lines = [{"label": label, "amount": amount} for label, amount in fee_breakdown(structure)]
        self.fee.show(
            lines,
            message="Fee Structure Details",
            total=calculate_total_fee(structure),
            structure_id=structure.get("id") or structure.get("fee_structure_id"),
            structure_name=structure.get("structure_name"),
        )
        return True

    def _fetch_fee_structure(self, ticket):
        try:
            structure = self.api.get_json(
                f"{ACADEMICS_API}/fees/structures/find",
                params={"course_id": ticket.course_id, "batch_id": ticket.batch_id},
            )
        except AuthExpired:
            raise
        except ErpError as e:
            logger.error("❌ Fee lookup failed for course=%s batch=%s: %s", ticket.course_id, ticket.batch_id, e)
            return self.apply_fee_structure(ticket, error=e)
        return self.apply_fee_structure(ticket, structure)

    def select_batch(self, batch_id) -> Ticket:
        ticket = self.begin_batch(batch_id)
        if ticket.batch_id:
            self._fetch_fee_structure(ticket)
        return ticket

    # ------------------------------------------------------------------
    # Edit page: rebuild the saved selection before the form is shown
    # ------------------------------------------------------------------
    def replay(self, course_id, batch_id=None) -> Optional[Ticket]:
        self.select_course(course_id)
        if not self.course_id:
            return None

        batch_id = str(batch_id or "")
        if not batch_id:
            return None
        if not self.batch.has_option(batch_id):
            logger.warning("⚠️ Saved batch %s is not offered for course %s", batch_id, self.course_id)
            return None
        return self.select_batch(batch_id)

    def _run(self, tasks):
        if self.executor is None:
            for task in tasks:
                task()
            return
        futures = [self.executor.submit(task) for task in tasks]
        for future in futures:
            future.result()

    def as_dict(self):
        return {
            "state": self.state,
            "generation": self.generation,
            "course_id": self.course_id,
            "batch_id": self.batch_id,
            "batch": self.batch.as_dict(),
            "fee": self.fee.as_dict(),
            "subjects": self.subjects.as_dict(),
        }


class MarkEntryController:
    """Schedule -> enrollment list for mark entry, with the same stale-result guard."""

    def __init__(self, api):
        self.api = api
        self.schedules = []
        self.schedule = None
        self.generation = 0
        self.enrollments = DisplayRegion("mark-entry-body", "Select an exam schedule to enter marks.")

    def load_schedules(self):
        self.schedules = self.api.get_json("/api/mark-entry/my-assigned-schedules") or []
        return self.schedules

    def schedule_options(self):
        return [
            {"value": str(s.get("schedule_id")), "label": s.get("exam_name") or f"Schedule {s.get('schedule_id')}"}
            for s in self.schedules
        ]

    def find_schedule(self, schedule_id):
        schedule_id = str(schedule_id or "")
        for s in self.schedules:
            if str(s.get("schedule_id")) == schedule_id:
                return s
        return None

    @property
    def max_marks(self):
        return (self.schedule or {}).get("total_marks")

    def begin_schedule(self, schedule_id):
        self.generation += 1
        self.schedule = self.find_schedule(schedule_id)
        self.enrollments.reset()
        return ScheduleTicket(self.generation, str(schedule_id or ""))

    def apply_enrollments(self, ticket, enrollments=None, error=None) -> bool:
        if ticket.generation != self.generation:
            logger.info("⏭️ Dropping stale enrollment list for schedule %s", ticket.schedule_id)
            return False
        if error is not None:
            self.enrollments.error(f"Error loading student list: {error}")
        elif enrollments:
            rows = []
            for e in enrollments:
                existing = e.get("marks_obtained")
                rows.append({
                    "enrollment_id": e.get("enrollment_id"),
                    "student_id": e.get("student_id"),
                    "student_name": e.get("student_name"),
                    "hall_ticket_number": e.get("hall_ticket_number"),
                    "marks_obtained": "" if existing is None else existing,
                })
            self.enrollments.show(rows)
        else:
            self.enrollments.empty("No eligible students found for this exam or marks already entered.")
        return True

    def select_schedule(self, schedule_id):
        ticket = self.begin_schedule(schedule_id)
        if self.schedule is None:
            return ticket
        try:
            enrollments = self.api.get_json(f"/api/mark-entry/enrollments/{ticket.schedule_id}")
        except AuthExpired:
            raise
        except ErpError as e:
            self.apply_enrollments(ticket, error=e)
            return ticket
        self.apply_enrollments(ticket, enrollments)
        return ticket

    def exam_details(self):
        s = self.schedule
        if not s:
            return ""
        return f"Date: {s.get('exam_date')} | Subject: {s.get('subject_name')} | Max Marks: {s.get('total_marks')}"
