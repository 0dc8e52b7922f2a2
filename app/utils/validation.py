import re


class ValidationError(ValueError):
    """Bad query parameter. The API turns this into a 400."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


# -----------------------------
# Period
# -----------------------------

PERIODS = ("3m", "6m", "12m", "ytd", "all")

def parse_period(value: str | None, default: str = "all") -> str:
    """
    Dashboard period filter.
    - empty / None → default
    - case-insensitive: "YTD" == "ytd"
    """
    if value is None or not value.strip():
        return default
    period = value.strip().lower()
    if period not in PERIODS:
        raise ValidationError("period", f"must be one of {', '.join(PERIODS)}")
    return period


# -----------------------------
# Integers / pagination
# -----------------------------

INT_RE = re.compile(r"^\d+$")

MAX_PAGE_SIZE = 200
DEFAULT_PAGE_SIZE = 50

def parse_positive_int(value: str | None, field: str, default: int, maximum: int | None = None) -> int:
    if value is None or not str(value).strip():
        return default
    raw = str(value).strip()
    if not INT_RE.match(raw) or int(raw) < 1:
        raise ValidationError(field, "must be a positive integer")
    number = int(raw)
    if maximum is not None and number > maximum:
        raise ValidationError(field, f"must be at most {maximum}")
    return number


FLOAT_RE = re.compile(r"^\d+(\.\d+)?$")

def parse_non_negative_float(value: str | None, field: str, maximum: float | None = None) -> float | None:
    """
    Optional numeric threshold: empty / None → None.
    """
    if value is None or not str(value).strip():
        return None
    raw = str(value).strip()
    if not FLOAT_RE.match(raw):
        raise ValidationError(field, "must be a non-negative number")
    number = float(raw)
    if maximum is not None and number > maximum:
        raise ValidationError(field, f"must be at most {maximum:g}")
    return number


def parse_choice(value: str | None, field: str, allowed: tuple[str, ...]) -> str | None:
    """
    Optional exact-match filter against a fixed list: empty / None → None.
    """
    if value is None or not value.strip():
        return None
    choice = value.strip()
    if choice not in allowed:
        raise ValidationError(field, f"must be one of {', '.join(allowed)}")
    return choice


def parse_pagination(args) -> tuple[int, int]:
    page = parse_positive_int(args.get("page"), "page", 1)
    page_size = parse_positive_int(
        args.get("pageSize") or args.get("page_size"), "pageSize", DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
    )
    return page, page_size


# -----------------------------
# Sorting / search
# -----------------------------

def parse_sort(value: str | None, allowed: tuple[str, ...], default: str) -> tuple[str, bool]:
    """
    "open_balance"  → ("open_balance", False)
    "-open_balance" → ("open_balance", True)
    Only whitelisted column names pass; everything else is a 400.
    """
    raw = (value or default).strip()
    descending = raw.startswith("-")
    column = raw.lstrip("-")
    if column not in allowed:
        raise ValidationError("sort", f"must be one of {', '.join(allowed)}")
    return column, descending


MAX_SEARCH_LEN = 100

def clean_search(value: str | None) -> str | None:
    """
    Free-text filter. Empty → None.
    """
    if not value or not value.strip():
        return None
    text = value.strip()
    if len(text) > MAX_SEARCH_LEN:
        raise ValidationError("search", f"must be at most {MAX_SEARCH_LEN} characters")
    return text
