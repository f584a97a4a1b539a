"""网络工具 — URL 安全校验"""

from __future__ import annotations

from urllib.parse import urlparse

from brewkit.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https", "file"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https/file，file 用于本地镜像

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 {'/'.join(sorted(_ALLOWED_SCHEMES))}: {url}"
        )


def url_basename(url: str, default: str = "download") -> str:
    """从 URL 路径中取文件名，取不到时返回 default"""
    path = urlparse(url).path.rstrip("/")
    name = path.rsplit("/", 1)[-1] if path else ""
    # blob_plain 风格的 "<sha>:/file" 只保留冒号后的部分
    name = name.rsplit(":", 1)[-1]
    return name or default
