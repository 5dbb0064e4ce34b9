"""部署用文件操作

这些函数本身不记日志，调用方经 CommandRunner.apply() 包装后才算一次"变更操作"。
"""

from __future__ import annotations

import os
import pwd
import shutil
from pathlib import Path

from provisioner.core.exceptions import CredentialError


def read_lines(path: str | Path) -> list[str]:
    p = Path(path)
    if not p.exists():
        return []
    return [line.strip() for line in p.read_text(encoding="utf-8").splitlines()]


def has_lines(path: str | Path, lines: list[str]) -> bool:
    """文件中是否已包含全部指定行（忽略首尾空白）"""
    existing = set(read_lines(path))
    return all(line.strip() in existing for line in lines)


def ensure_lines(path: str | Path, lines: list[str]) -> list[str]:
    """把缺失的行追加到文件末尾，返回实际追加的行

    重复运行不会产生重复行。
    """
    p = Path(path)
    existing = set(read_lines(p))
    missing = [line for line in lines if line.strip() not in existing]
    if not missing:
        return []
    p.parent.mkdir(parents=True, exist_ok=True)
    prefix = ""
    if p.exists() and p.stat().st_size:
        with open(p, "rb") as f:
            f.seek(-1, os.SEEK_END)
            if f.read(1) != b"\n":
                prefix = "\n"
    with open(p, "a", encoding="utf-8") as f:
        f.write(prefix + "\n".join(missing) + "\n")
    return missing


def write_secret(path: str | Path, content: str, *, owner: str) -> Path:
    """以 0600 权限原子创建秘密文件并交给 owner

    用 O_CREAT|O_EXCL 带权限创建，不存在先创建后 chmod 的暴露窗口。
    上次中断残留的同名文件先删除。

    Raises:
        CredentialError: owner 账户不存在
    """
    try:
        pw = pwd.getpwnam(owner)
    except KeyError:
        raise CredentialError(f"凭据文件属主账户不存在: {owner}") from None
    p = Path(path)
    p.unlink(missing_ok=True)
    fd = os.open(p, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        os.fchown(f.fileno(), pw.pw_uid, pw.pw_gid)
        f.write(content + "\n")
    return p


def remove_path(path: str | Path) -> bool:
    """删除文件或目录树，不存在时返回 False"""
    p = Path(path)
    if p.is_dir() and not p.is_symlink():
        shutil.rmtree(p)
        return True
    if p.exists() or p.is_symlink():
        p.unlink()
        return True
    return False


def make_dirs(*paths: str | Path, mode: int = 0o755) -> None:
    for p in paths:
        Path(p).mkdir(parents=True, exist_ok=True, mode=mode)
