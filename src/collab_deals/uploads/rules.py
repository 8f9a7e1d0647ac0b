"""Per-file upload constraint rules: each returns (passed, explanation)."""

from collab_deals.models.upload import LocalFile, UploadConstraints


def _format_bytes(n: int) -> str:
    if n >= 1024 * 1024:
        return f"{n / (1024 * 1024):.0f} MB"
    if n >= 1024:
        return f"{n / 1024:.0f} KB"
    return f"{n} bytes"


def apply_count_rule(file: LocalFile, index: int, constraints: UploadConstraints) -> tuple[bool, str]:
    """Files past max_files (by position in the request) are rejected."""
    if index >= constraints.max_files:
        return False, f"Too many files (max {constraints.max_files})"
    return True, "Within file count"


def apply_size_rule(file: LocalFile, index: int, constraints: UploadConstraints) -> tuple[bool, str]:
    size = file.size_bytes or 0
    if size > constraints.max_file_bytes:
        return False, (
            f"File is {_format_bytes(size)}, larger than the "
            f"{_format_bytes(constraints.max_file_bytes)} limit"
        )
    return True, "Within size limit"


def apply_type_rule(file: LocalFile, index: int, constraints: UploadConstraints) -> tuple[bool, str]:
    """Extension and MIME type must both be allowed when the respective list is set."""
    allowed_ext = [e.lower().lstrip(".") for e in constraints.allowed_extensions]
    if allowed_ext and file.extension not in allowed_ext:
        return False, f"File type '.{file.extension}' not allowed (allowed: {', '.join(allowed_ext)})"

    prefixes = [p.lower() for p in constraints.allowed_mime_prefixes]
    mime = (file.mime_type or "").lower()
    if prefixes and not any(mime.startswith(p) for p in prefixes):
        return False, f"MIME type '{file.mime_type}' not allowed"
    return True, "File type allowed"


_RULES = [apply_count_rule, apply_size_rule, apply_type_rule]


def check_file(file: LocalFile, index: int, constraints: UploadConstraints) -> str | None:
    """Return the first rejection reason, or None when the file is acceptable."""
    for rule in _RULES:
        passed, explanation = rule(file, index, constraints)
        if not passed:
            return explanation
    return None
