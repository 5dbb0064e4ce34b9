"""部署领域服务

拆分说明:
- packages.py: 系统软件包
- components.py: Greenbone 组件下载、校验、构建与安装
- system.py: 账户、目录、密钥、Redis/MQTT、权限、sudo
- database.py: PostgreSQL 角色与数据库
- credentials.py: 管理员账户与凭据
- systemd.py: 单元文件与服务启动
- recipe.py: 按依赖顺序组装完整步骤列表
- provisioner.py: 运行锁 + 运行作用域 + 步骤执行
"""

from provisioner.services.provisioner import Provisioner
from provisioner.services.recipe import build_steps, select_steps

__all__ = ["Provisioner", "build_steps", "select_steps"]
