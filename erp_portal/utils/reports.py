# erp_portal/utils/reports.py
"""
Attendance and feedback report shaping.

Monthly attendance comes back from the backend as one row per user with a
`daily_attendance_pivot` (day -> status). It is turned into a pandas frame for
the CSV export and into a stacked bar chart (PNG, base64) for the page.
"""
import base64
import io

import matplotlib
matplotlib.use("Agg")  # no display on the server
import matplotlib.pyplot as plt
import pandas as pd

COUNT_COLUMNS = [
    ("present_count", "P"),
    ("absent_count", "A"),
    ("late_count", "L"),
    ("leave_count", "LV"),
]

STATUS_CLASSES = {"P": "status-P", "A": "status-A", "L": "status-L"}


def _count(value):
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def monthly_grid(report, total_days):
    """Rows for the monthly table: counts plus one status initial per day."""
    rows = []
    for user in report or []:
        pivot = user.get("daily_attendance_pivot") or {}
        days = []
        for day in range(1, total_days + 1):
            status = pivot.get(str(day)) or pivot.get(day) or ""
            initial = status[:1].upper()
            days.append({"day": day, "initial": initial, "css": STATUS_CLASSES.get(initial, "")})
        rows.append({
            "user_id": user.get("user_id"),
            "full_name": user.get("full_name") or "N/A",
            "counts": {label: _count(user.get(key)) for key, label in COUNT_COLUMNS},
            "days": days,
        })
    return rows


def monthly_frame(rows, total_days):
    records = []
    for row in rows:
        record = {"User ID": row["user_id"], "Name": row["full_name"]}
        record.update(row["counts"])
        for cell in row["days"]:
            record[str(cell["day"])] = cell["initial"]
        records.append(record)

    columns = ["User ID", "Name"] + [label for _, label in COUNT_COLUMNS]
    columns += [str(d) for d in range(1, total_days + 1)]
    return pd.DataFrame(records, columns=columns)


def frame_to_csv(df):
    output = io.BytesIO()
    df.to_csv(output, index=False)
    output.seek(0)
    return output


def monthly_chart(rows, title=""):
    """Stacked P/A/L/LV bars per user, as a data: URI. None when there is nothing to plot."""
    if not rows:
        return None

    names = [r["full_name"] for r in rows]
    labels = [label for _, label in COUNT_COLUMNS]
    colours = {"P": "#22c55e", "A": "#ef4444", "L": "#f59e0b", "LV": "#6366f1"}

    fig, ax = plt.subplots(figsize=(max(6, len(rows) * 0.6), 4))
    try:
        bottom = [0] * len(rows)
        for label in labels:
            values = [r["counts"][label] for r in rows]
            ax.bar(names, values, bottom=bottom, label=label, color=colours[label])
            bottom = [b + v for b, v in zip(bottom, values)]

        ax.set_ylabel("Days")
        if title:
            ax.set_title(title)
        ax.legend(loc="upper right", fontsize=8)
        plt.setp(ax.get_xticklabels(), rotation=45, ha="right", fontsize=8)
        fig.tight_layout()

        buffered = io.BytesIO()
        fig.savefig(buffered, format="png", dpi=100)
    finally:
        plt.close(fig)

    img_str = base64.b64encode(buffered.getvalue()).decode("utf-8")
    return f"data:image/png;base64,{img_str}"


def student_attendance_summary(records):
    """present / absent / percentage for the student's own report."""
    records = records or []
    total = len(records)
    present = sum(1 for r in records if str(r.get("status") or "").upper() in ("PRESENT", "P"))
    absent = total - present
    percentage = f"{present / total * 100:.2f}" if total else "0.00"
    return {"total": total, "present": present, "absent": absent, "percentage": percentage}


# ----------------------------------------------------------------------
# Feedback moderation
# ----------------------------------------------------------------------
def feedback_stats(items):
    return {
        "total": len(items),
        "high": sum(1 for i in items if i.get("priority") == "High"),
        "pending": sum(1 for i in items if i.get("status") == "Pending"),
        "resolved": sum(1 for i in items if i.get("status") == "Resolved"),
    }


def filter_feedback(items, status="all", category="all", search=""):
    term = (search or "").strip().lower()
    out = []
    for item in items:
        if status and status != "all" and item.get("status") != status:
            continue
        if category and category != "all" and item.get("category") != category:
            continue
        if term:
            subject = (item.get("subject") or "").lower()
            sender = (item.get("user_name") or "").lower()
            if term not in subject and term not in sender:
                continue
        out.append(item)
    return out
