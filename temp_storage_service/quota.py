from exceptions import FileTooLarge, StorageExceeded


def check_file_size(size_bytes: int, max_file_bytes: int) -> None:
    """Single-file gate, cheap enough to run on every received chunk."""
    if size_bytes > max_file_bytes:
        raise FileTooLarge(max_file_bytes)


def admit(current_total_bytes: int, incoming_bytes: int, max_total_bytes: int) -> None:
    """Aggregate quota gate.

    Args:
        current_total_bytes: Sum of ``size_bytes`` over live records, taken from
            the metadata store at decision time
        incoming_bytes: Size of the file being admitted
        max_total_bytes: Configured storage ceiling

    Raises:
        StorageExceeded: if storing the file would go over the ceiling
    """
    if current_total_bytes + incoming_bytes > max_total_bytes:
        raise StorageExceeded(current_total_bytes, incoming_bytes, max_total_bytes)


def usage_percentage(total_bytes: int, max_total_bytes: int) -> float:
    if max_total_bytes <= 0:
        return 0.0
    return round(total_bytes / max_total_bytes * 100, 2)
