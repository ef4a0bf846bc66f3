from datetime import date, timedelta

GESTATION_DAYS = 280  # Naegele's rule: LMP + 40 weeks
MAX_WEEK = 42


def calculate_due_date(lmp_date: date) -> date:
    return lmp_date + timedelta(days=GESTATION_DAYS)


def days_since_lmp(lmp_date: date, today: date | None = None) -> int:
    today = today or date.today()
    return (today - lmp_date).days


def current_week(lmp_date: date, today: date | None = None) -> int:
    """Week of pregnancy the user is in (week 1 starts on the LMP), capped to 1..42."""
    completed_weeks = days_since_lmp(lmp_date, today) // 7
    return max(1, min(MAX_WEEK, completed_weeks + 1))


def days_remaining(lmp_date: date, today: date | None = None) -> int:
    today = today or date.today()
    return max(0, (calculate_due_date(lmp_date) - today).days)


def symptom_week(lmp_date: date | None, today: date | None = None) -> int | None:
    """Completed weeks since the LMP, as sent along with a symptom check."""
    if lmp_date is None:
        return None
    return abs(days_since_lmp(lmp_date, today)) // 7
