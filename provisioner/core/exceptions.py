"""统一异常体系

所有业务异常继承 ProvisionError，替代散落的 ValueError / RuntimeError。
步骤执行器据此区分"步骤失败"和"运行中断"，CLI 层据此输出友好提示和退出码。
"""

from __future__ import annotations


class ProvisionError(Exception):
    """部署框架基础异常"""

    code: str = "UNKNOWN"
    # 作为整个运行的退出码（步骤失败时沿用）
    returncode: int = 1

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(ProvisionError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(ProvisionError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class PreflightError(ProvisionError):
    """环境前置检查失败（非 root、网络不可达、磁盘不足）"""

    code = "PREFLIGHT_ERROR"

    def __init__(self, message: str, failures: list[str] | None = None) -> None:
        super().__init__(message)
        self.failures = failures or []


class CommandFailedError(ProvisionError):
    """外部命令返回非零状态"""

    code = "COMMAND_FAILED"

    def __init__(self, command: str, returncode: int, stderr: str = "") -> None:
        super().__init__(f"命令失败 (rc={returncode}): {command}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class PostconditionError(ProvisionError):
    """命令执行成功但期望的结果状态不存在"""

    code = "POSTCONDITION_FAILED"


class CredentialError(ProvisionError):
    """无法从外部命令输出中提取管理员凭据"""

    code = "CREDENTIAL_ERROR"


class ConcurrentRunError(ProvisionError):
    """已有另一个部署进程持有运行锁"""

    code = "CONCURRENT_RUN"
    returncode = 75


class RunInterrupted(ProvisionError):
    """运行被外部信号中断（SIGINT / SIGTERM）"""

    code = "INTERRUPTED"

    def __init__(self, signum: int) -> None:
        super().__init__(f"收到信号 {signum}，运行中断")
        self.signum = signum
        self.returncode = 128 + signum
