"""配置文件读取与部署产物写入

- load_yaml / dump_yaml: 部署配置的 YAML 反序列化与回显
- atomic_write: unit 文件、sudoers 草稿等产物的原子替换写入，带显式权限
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 部署配置文件大小上限 (1MB)
MAX_YAML_SIZE = 1024 * 1024


def atomic_write(path: Path, content: str, *, mode: int = 0o644) -> None:
    """写同目录临时文件后 rename 替换目标，读者只会看到旧内容或完整新内容

    参数:
        path: 目标文件
        content: 文本内容（UTF-8）
        mode: 目标权限，替换前在临时文件上设置，不存在宽权限窗口

    异常:
        OSError: 写入或替换失败，临时文件已清理
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            os.fchmod(f.fileno(), mode)
            f.write(content)
        os.replace(tmp, str(path))
    except Exception:
        # KeyboardInterrupt/SystemExit 由运行作用域处理，这里不拦截
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取部署配置文件

    文件不存在或为空视为"全部使用默认值"，返回空字典。

    异常:
        yaml.YAMLError: YAML 语法错误
        ValueError: 文件超过 MAX_YAML_SIZE，或顶层不是映射
    """
    p = Path(path)
    if not p.is_file():
        return {}

    size = p.stat().st_size
    if size > MAX_YAML_SIZE:
        raise ValueError(f"配置文件过大: {p} ({size} 字节，上限 {MAX_YAML_SIZE})")

    text = p.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        logger.error("配置文件语法错误: %s (%s)", p, e)
        raise

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"配置文件顶层必须是映射: {p} (实际为 {type(data).__name__})")
    return data


def dump_yaml(data: Any) -> str:
    """序列化为 YAML 文本，保持字段顺序"""
    return yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)
