"""网络工具 - URL 安全校验与连通性探测"""

from __future__ import annotations

import logging
import urllib.error
import urllib.request
from urllib.parse import urlparse

from provisioner.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def is_reachable(url: str, *, timeout: float = 10.0) -> bool:
    """HEAD 请求探测 URL 是否可达（任何 HTTP 响应都算可达）"""
    validate_url_scheme(url, context="reachability check")
    req = urllib.request.Request(url, method="HEAD")
    try:
        with urllib.request.urlopen(req, timeout=timeout):  # nosec B310
            return True
    except urllib.error.HTTPError:
        # 服务器有响应，网络本身是通的
        return True
    except (urllib.error.URLError, OSError) as e:
        logger.debug("不可达: %s (%s)", url, e)
        return False
