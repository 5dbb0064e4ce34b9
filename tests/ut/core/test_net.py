"""URL scheme 校验与连通性探测测试"""

import urllib.error

import pytest

from provisioner.core.exceptions import ValidationError
from provisioner.utils import net
from provisioner.utils.net import is_reachable, validate_url_scheme


class TestValidateUrlScheme:
    def test_http_ok(self) -> None:
        validate_url_scheme("http://example.com/key.asc")

    def test_https_ok(self) -> None:
        validate_url_scheme("https://www.greenbone.net/GBCommunitySigningKey.asc")

    def test_file_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("file:///etc/passwd")

    def test_empty_scheme_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("/local/path")

    def test_context_in_error(self) -> None:
        with pytest.raises(ValidationError, match="download gvmd"):
            validate_url_scheme("ftp://x", context="download gvmd")


class _Response:
    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


class TestIsReachable:
    def test_ok(self, monkeypatch) -> None:
        monkeypatch.setattr(net.urllib.request, "urlopen", lambda req, timeout: _Response())
        assert is_reachable("https://example.com")

    def test_http_error_still_reachable(self, monkeypatch) -> None:
        def raise_404(req, timeout):
            raise urllib.error.HTTPError(req.full_url, 404, "nf", {}, None)

        monkeypatch.setattr(net.urllib.request, "urlopen", raise_404)
        assert is_reachable("https://example.com")

    def test_unreachable(self, monkeypatch) -> None:
        def refuse(req, timeout):
            raise urllib.error.URLError("refused")

        monkeypatch.setattr(net.urllib.request, "urlopen", refuse)
        assert not is_reachable("https://example.com")

    def test_scheme_checked_first(self) -> None:
        with pytest.raises(ValidationError):
            is_reachable("file:///etc/passwd")
