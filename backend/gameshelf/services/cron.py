"""Cron expression parsing for scheduled jobs."""

from apscheduler.triggers.cron import CronTrigger

from gameshelf.exceptions import ScheduleConfigurationError

CRON_MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * sun",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

# Crontab day numbers, 0 and 7 both being Sunday
WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")
WEEKDAY_ORDER = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _crontab_days(part: str) -> set[str]:
    """Day names selected by one numeric day-of-week list element."""
    base, _, step_text = part.partition("/")
    step = int(step_text) if step_text else 1
    if step < 1:
        raise ValueError(f"step must be positive in '{part}'")

    if base == "*":
        first, last = 0, 6
    elif "-" in base:
        first_text, last_text = base.split("-", 1)
        first, last = int(first_text), int(last_text)
    else:
        first = int(base)
        last = 7 if step_text else first

    if not 0 <= first <= last <= 7:
        raise ValueError(f"day of week '{part}' is out of range 0-7")
    return {WEEKDAY_NAMES[day] for day in range(first, last + 1, step)}


def convert_day_of_week(field: str) -> str:
    """Rewrite crontab day-of-week numbers as the names APScheduler understands.

    APScheduler numbers days from Monday; crontab from Sunday. Named days
    pass through unchanged.
    """
    if field in ("*", "?"):
        return field

    parts = []
    numeric_days: set[str] = set()
    for part in field.lower().split(","):
        if any(c.isalpha() for c in part):
            parts.append(part)
        else:
            numeric_days |= _crontab_days(part)
    parts.extend(name for name in WEEKDAY_ORDER if name in numeric_days)
    return ",".join(parts)


def parse_cron_expression(expression: str, timezone: str = "UTC") -> CronTrigger:
    """Build a trigger from a cron expression.

    Accepts standard 5-field crontab (``minute hour day month day_of_week``),
    6 fields with a leading seconds field, and the ``@daily``-style macros.
    Day-of-week numbers follow crontab: 0 and 7 are Sunday.

    Raises:
        ScheduleConfigurationError: If the expression cannot be parsed
    """
    if not expression or not expression.strip():
        raise ScheduleConfigurationError("Cron expression is empty")

    text = expression.strip()
    text = CRON_MACROS.get(text.lower(), text)
    fields = text.split()

    if len(fields) == 5:
        fields = ["0", *fields]
    if len(fields) != 6:
        raise ScheduleConfigurationError(
            f"Invalid cron expression '{expression}': expected 5 or 6 fields, got {len(fields)}"
        )

    second, minute, hour, day, month, day_of_week = fields
    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=convert_day_of_week(day_of_week),
            timezone=timezone,
        )
    except (ValueError, TypeError, LookupError) as e:
        raise ScheduleConfigurationError(f"Invalid cron expression '{expression}': {e}") from e
