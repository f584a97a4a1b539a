"""URL 工具测试"""

import pytest

from brewkit.core.exceptions import ValidationError
from brewkit.utils.net import url_basename, validate_url_scheme


class TestValidateUrlScheme:
    @pytest.mark.parametrize("url", [
        "http://example.com/a.tar.gz",
        "https://example.com/a.tar.gz",
        "file:///srv/mirror/a.tar.gz",
    ])
    def test_allowed(self, url: str) -> None:
        validate_url_scheme(url)

    def test_ftp_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("ftp://evil.com/payload")

    def test_empty_scheme_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("/local/path")

    def test_context_in_error(self) -> None:
        with pytest.raises(ValidationError, match="fetch vpnc"):
            validate_url_scheme("gopher://x", context="fetch vpnc")


class TestUrlBasename:
    def test_plain(self) -> None:
        assert url_basename("https://example.com/dl/app-1.0.tar.gz") == "app-1.0.tar.gz"

    def test_blob_plain_style(self) -> None:
        url = (
            "http://git.infradead.org/users/dwmw2/vpnc-scripts.git/blob_plain/"
            "a64e23b1b6602095f73c4ff7fdb34cccf7149fd5:/vpnc-script"
        )
        assert url_basename(url) == "vpnc-script"

    def test_query_ignored(self) -> None:
        assert url_basename("https://example.com/get/tool.zip?token=1") == "tool.zip"

    def test_fallback(self) -> None:
        assert url_basename("https://example.com/") == "download"
