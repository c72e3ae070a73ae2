import posixpath

# Names that can't refer to a regular file inside a directory
_UNUSABLE_NAMES = {"", ".", ".."}


def sanitize_filename(name: str) -> str:
    """Turn a user-supplied display name into a single safe path segment.

    Spaces and both kinds of slash become underscores, then the result is
    path-cleaned. Returns an empty string when nothing usable is left, so the
    caller can fall back to another name or reject the request.
    """
    if not name:
        return ""

    safe_name = name.replace(" ", "_")
    safe_name = safe_name.replace("/", "_")
    safe_name = safe_name.replace("\\", "_")
    safe_name = posixpath.normpath(safe_name)

    if safe_name in _UNUSABLE_NAMES or "\x00" in safe_name:
        return ""
    return safe_name
