"""Safety helpers for filesystem operations."""

from __future__ import annotations

import os

SYSTEM_TOP_LEVEL = {
    b"boot",
    b"dev",
    b"proc",
    b"sys",
    b"lost+found",
}

_MAX_IDENTIFIER_LENGTH = 255


def is_system_path(path: bytes) -> bool:
    """True when ``path`` is the root or lives under a kernel/boot directory.

    The last component is not resolved, so a symlink pointing into ``/proc``
    is still an ordinary file.
    """
    absolute = os.path.abspath(path)
    resolved = os.path.join(os.path.realpath(os.path.dirname(absolute)), os.path.basename(absolute))
    if resolved == b"/":
        return True
    parts = [part for part in resolved.split(b"/") if part]
    if not parts:
        return False
    return parts[0] in SYSTEM_TOP_LEVEL


def is_within(target: bytes, base: bytes) -> bool:
    target = os.path.normpath(target)
    base = os.path.normpath(base)
    if target == base:
        return True
    prefix = base if base.endswith(b"/") else base + b"/"
    return target.startswith(prefix)


def is_dot_entry(path: bytes) -> bool:
    # checked before normalisation: "a/." must not turn into "a"
    return os.path.basename(path.rstrip(b"/")) in {b"", b".", b".."}


def validate_entry_id(value: str) -> None:
    if not isinstance(value, str) or not value:
        raise ValueError("回收桶項目 ID 不可為空")
    if value in {".", ".."}:
        raise ValueError(f"回收桶項目 ID 格式不正確：{value}")
    if "/" in value or "\x00" in value:
        raise ValueError(f"回收桶項目 ID 格式不正確：{value}")
    if len(os.fsencode(value)) > _MAX_IDENTIFIER_LENGTH:
        raise ValueError(f"回收桶項目 ID 過長：{value}")
