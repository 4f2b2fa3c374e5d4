"""Formatting helpers for dstui."""

from datetime import datetime

_BYTE_UNITS = ["B", "KB", "MB", "GB", "TB"]


def format_bytes(size: int) -> str:
    """Format a byte count with binary units.

    Example: 1536 -> "1.50 KB"
    """
    if size <= 0:
        return "0 B"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_BYTE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{value:.2f} {_BYTE_UNITS[unit]}"


def format_rate(bytes_per_second: int) -> str:
    return f"{format_bytes(bytes_per_second)}/s"


def format_seconds(seconds: int) -> str:
    """Format a duration like "1h 2m 3s"; zero and negative durations render as "-"."""
    if seconds <= 0:
        return "-"
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def render_progress_bar(fraction: float, width: int = 10) -> str:
    """Render a text progress bar with the percentage centred in it.

    Example: render_progress_bar(0.5, 10) -> "[███ 50%   ]"
    """
    fraction = max(0.0, min(1.0, fraction))
    percent_text = f"{round(fraction * 100):>3}%"
    filled = min(width, int(fraction * width))
    start = max(0, (width - len(percent_text)) // 2)
    end = start + len(percent_text)

    chars = []
    for i in range(width):
        if start <= i < end and i - start < len(percent_text):
            chars.append(percent_text[i - start])
        else:
            chars.append("█" if i < filled else " ")
    return "[" + "".join(chars) + "]"


def truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max(0, max_len - 3)] + "..."
