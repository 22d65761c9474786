# erp_portal/utils/formatters.py
import math
from datetime import date, datetime

import pytz

CURRENCY_SYMBOLS = {"USD": "$", "INR": "₹"}


def _group_western(digits):
    return f"{int(digits):,}"


def _group_indian(digits):
    # 12,34,567: last three digits, then pairs
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    pairs = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join(pairs + [tail])


def parse_datetime(value):
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


class Formatters:
    """Currency and date formatting driven by the school's settings."""

    def __init__(self, currency="INR", timezone="Asia/Kolkata"):
        self.currency = (currency or "INR").upper()
        self.symbol = CURRENCY_SYMBOLS.get(self.currency, "₹")
        self.locale = "en-US" if self.currency == "USD" else "en-IN"
        self.tz = pytz.timezone(timezone or "Asia/Kolkata")

    def format_currency(self, amount):
        try:
            value = float(amount)
        except (TypeError, ValueError):
            value = float("nan")
        if math.isnan(value):
            return f"{self.symbol}0.00"

        sign = "-" if value < 0 else ""
        whole, frac = f"{abs(value):.2f}".split(".")
        grouped = _group_western(whole) if self.locale == "en-US" else _group_indian(whole)
        return f"{sign}{self.symbol}{grouped}.{frac}"

    def format_date(self, value, long=False):
        if not value:
            return "N/A"
        try:
            dt = parse_datetime(value)
        except (TypeError, ValueError):
            return str(value)
        if dt.tzinfo is not None:
            dt = dt.astimezone(self.tz)
        return dt.strftime("%d %B %Y" if long else "%d %b %Y")

    def as_dict(self):
        return {"currency": self.currency, "symbol": self.symbol, "locale": self.locale}
