"""PostgreSQL 初始化步骤

角色、数据库、dba 角色授权分别成步，每步先查询系统目录确认是否已存在，
重复运行不会因 "already exists" 失败。
"""

from __future__ import annotations

import logging

from provisioner.core.config import Config
from provisioner.core.context import ProvisionContext
from provisioner.core.exceptions import CommandFailedError
from provisioner.core.models import Step
from provisioner.services.system import unit_active

logger = logging.getLogger(__name__)

POSTGRES_UNIT = "postgresql"


def as_postgres(*cmd: str) -> list[str]:
    return ["runuser", "-u", "postgres", "--", *cmd]


def query_flag(ctx: ProvisionContext, sql: str, database: str = "postgres") -> bool:
    """执行返回单个 0/1 的查询

    Raises:
        CommandFailedError: psql 本身失败（数据库不可用等），前置条件按"无法判定"处理
    """
    result = ctx.commands.probe(as_postgres("psql", "-d", database, "-tAc", sql))
    if not result.success:
        raise CommandFailedError(result.command_line, result.returncode, result.stderr)
    return result.stdout.strip() == "1"


def role_exists(ctx: ProvisionContext, role: str) -> bool:
    return query_flag(ctx, f"SELECT 1 FROM pg_roles WHERE rolname = '{role}'")


def database_exists(ctx: ProvisionContext, name: str) -> bool:
    return query_flag(ctx, f"SELECT 1 FROM pg_database WHERE datname = '{name}'")


def dba_granted(ctx: ProvisionContext, user: str) -> bool:
    return role_exists(ctx, "dba") and query_flag(
        ctx, f"SELECT 1 WHERE pg_has_role('{user}', 'dba', 'member')",
    )


def database_steps(config: Config) -> list[Step]:
    user = config.service_user
    db = config.db_name

    def start(ctx: ProvisionContext) -> None:
        ctx.commands.run(["systemctl", "start", POSTGRES_UNIT])

    def create_role(ctx: ProvisionContext) -> None:
        ctx.commands.run(as_postgres("createuser", "-DRS", user))

    def create_db(ctx: ProvisionContext) -> None:
        ctx.commands.run(as_postgres("createdb", "-O", user, db))

    def grant_dba(ctx: ProvisionContext) -> None:
        if not role_exists(ctx, "dba"):
            ctx.commands.run(as_postgres(
                "psql", "-d", db, "-c", "CREATE ROLE dba WITH SUPERUSER NOINHERIT;",
            ))
        ctx.commands.run(as_postgres("psql", "-d", db, "-c", f"GRANT dba TO {user};"))

    return [
        Step(
            name="postgresql", action=start,
            precondition=lambda ctx: unit_active(ctx, POSTGRES_UNIT),
            postcondition=lambda ctx: unit_active(ctx, POSTGRES_UNIT),
            description="启动 PostgreSQL",
        ),
        Step(
            name="db-role", action=create_role,
            precondition=lambda ctx: role_exists(ctx, user),
            postcondition=lambda ctx: role_exists(ctx, user),
            description=f"创建数据库角色 {user}",
        ),
        Step(
            name="db-database", action=create_db,
            precondition=lambda ctx: database_exists(ctx, db),
            postcondition=lambda ctx: database_exists(ctx, db),
            description=f"创建数据库 {db}",
        ),
        Step(
            name="db-dba-role", action=grant_dba,
            precondition=lambda ctx: dba_granted(ctx, user),
            postcondition=lambda ctx: dba_granted(ctx, user),
            description=f"授予 {user} dba 角色",
        ),
    ]
