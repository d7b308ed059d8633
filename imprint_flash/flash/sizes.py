"""Size arithmetic for device capacities, image sizes and progress.

Device capacities and image sizes routinely exceed 2**53, the largest
integer a float represents exactly. Every comparison and percentage in
the workflow is therefore done on Python ints; floats only appear in
display values that are already bounded (percentages, scaled units).
"""

import logging
from numbers import Integral

logger = logging.getLogger(__name__)

# (decimal suffix, binary suffix) from the largest unit down
_UNITS = [
    ("TB", "TiB"),
    ("GB", "GiB"),
    ("MB", "MiB"),
    ("KB", "KiB"),
]


def as_magnitude(value: object) -> int:
    """Coerce a backend-reported size to a non-negative int.

    Accepts ints and decimal strings (JSON producers sometimes quote
    large numbers to keep them exact).

    Args:
        value: Value to coerce.

    Returns:
        The value as an int.

    Raises:
        ValueError: Value is negative, a bool, or not integral.
    """
    if isinstance(value, bool):
        raise ValueError("size must be an integer, got bool")
    if isinstance(value, Integral):
        result = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        result = int(value.strip())
    else:
        raise ValueError(f"size must be a non-negative integer, got {value!r}")
    if result < 0:
        raise ValueError(f"size must be non-negative, got {result}")
    return result


def greater_than(a: int, b: int) -> bool:
    """Return True if a > b, compared exactly."""
    return as_magnitude(a) > as_magnitude(b)


def multiply(a: int, b: int) -> int:
    """Multiply two magnitudes without loss of precision."""
    return as_magnitude(a) * as_magnitude(b)


def divide(a: int, b: int) -> int:
    """Floor-divide two magnitudes.

    Raises:
        ZeroDivisionError: b is zero.
    """
    return as_magnitude(a) // as_magnitude(b)


def to_display_number(a: int) -> float:
    """Convert a magnitude to a float for display.

    Lossy above 2**53; only use for bounded values such as percentages.
    """
    return float(as_magnitude(a))


def clamp(value: int, upper: int) -> int:
    """Clamp an int to [0, upper]."""
    return max(0, min(int(value), as_magnitude(upper)))


def percent(done: int, total: int) -> int:
    """Compute floor(done * 100 / total), clamped to [0, 100].

    A zero total yields 0 instead of dividing by zero.

    Args:
        done: Bytes processed so far.
        total: Total bytes.

    Returns:
        Integer percentage.
    """
    total = as_magnitude(total)
    if total == 0:
        return 0
    done = clamp(done, total)
    return divide(multiply(done, 100), total)


def format_bytes(num_bytes: int, binary: bool = False) -> str:
    """Format a byte count with one decimal in the largest fitting unit.

    Examples: '512 B', '1.0 KB', '4.0 TB', '1.5 GiB'.

    Sizes below one kilobyte keep a space before the unit ('512 B'), like
    the larger units and the flasher's own dd-style lines, so a size reads
    the same in progress text and in the UI.

    Args:
        num_bytes: Byte count.
        binary: Use 1024-based units (KiB, MiB, ...) instead of 1000-based.

    Returns:
        Human-readable size string.
    """
    num_bytes = as_magnitude(num_bytes)
    base = 1024 if binary else 1000

    for power, (decimal_suffix, binary_suffix) in zip(range(4, 0, -1), _UNITS):
        divisor = base**power
        if num_bytes >= divisor:
            suffix = binary_suffix if binary else decimal_suffix
            return f"{num_bytes / divisor:.1f} {suffix}"

    return f"{num_bytes} B"


__all__ = [
    "as_magnitude",
    "clamp",
    "divide",
    "format_bytes",
    "greater_than",
    "multiply",
    "percent",
    "to_display_number",
]
