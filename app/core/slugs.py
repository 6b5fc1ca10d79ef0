import re
from typing import Iterable

FALLBACK_SLUG = "category"

_WHITESPACE = re.compile(r"\s+")
_NON_SLUG = re.compile(r"[^\w\-]+", re.ASCII)
_DASHES = re.compile(r"-{2,}")


def slugify(value: str) -> str:
    """名称 -> URL 安全的 slug；结果为空时退回 FALLBACK_SLUG"""
    slug = _WHITESPACE.sub("-", (value or "").strip().lower())
    slug = _NON_SLUG.sub("", slug)
    slug = _DASHES.sub("-", slug).strip("-")
    return slug or FALLBACK_SLUG


def unique_slug(base: str, taken: Iterable[str]) -> str:
    """在 base 后追加 -2、-3 ... 直到不与 taken 冲突"""
    taken = set(taken)
    if base not in taken:
        return base
    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


def is_derived_from(slug: str, name: str) -> bool:
    """slug 是否是由 name 自动生成的（含去重后缀），用于改名时决定是否跟随更新"""
    base = slugify(name)
    return re.fullmatch(re.escape(base) + r"(-\d+)?", slug or "") is not None
