from sqlalchemy.engine import make_url


def to_uppercase(value: str | None) -> str | None:
    """
    Upper-case a setting value (log level names), leaving None alone.
    """
    if value is None:
        return None
    return value.strip().upper()


def to_lowercase(value: str | None) -> str | None:
    """
    Lower-case a setting value (log format), leaving None alone.
    """
    if value is None:
        return None
    return value.strip().lower()


def blank_to_none(value: str | None) -> str | None:
    # DATABASE_URL= in a .env file yields "" rather than an unset variable
    if value is None or not str(value).strip():
        return None
    return str(value).strip()


def to_sync_url(url: str) -> str:
    """
    Derive a blocking-driver URL from an async one.

    'postgresql+asyncpg://u:p@h/db' -> 'postgresql://u:p@h/db'
    'sqlite+aiosqlite:///./autolayer.db' -> 'sqlite:///./autolayer.db'

    URLs without an explicit driver are returned unchanged.
    """
    parsed = make_url(url)
    if "+" not in parsed.drivername:
        return url
    return parsed.set(drivername=parsed.get_backend_name()).render_as_string(hide_password=False)
