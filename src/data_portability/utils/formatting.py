"""Human-readable formatting helpers."""

_SIZE_UNITS = ("B", "KB", "MB", "GB")


def format_file_size(num_bytes: int | None) -> str:
    """Format a byte count as e.g. '2 KB' or '1.5 MB'.

    Absent or zero sizes are shown as 'N/A'.
    """
    if not num_bytes:
        return "N/A"

    size = float(num_bytes)
    unit_index = 0
    while size >= 1024 and unit_index < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit_index += 1

    rounded = round(size, 1)
    if rounded == int(rounded):
        return f"{int(rounded)} {_SIZE_UNITS[unit_index]}"
    return f"{rounded} {_SIZE_UNITS[unit_index]}"
