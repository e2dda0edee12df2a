from __future__ import annotations

import argparse
import asyncio
import json
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from docker.errors import DockerException
from loguru import logger

from .core.config.constants import SENSITIVE_KEYWORDS
from .core.config.dsn import redact_dsn
from .core.config.loader import load_or_bootstrap
from .core.config.local_settings import LocalSettings, load_local_settings
from .core.container.adapter import ContainerEngineAdapter
from .core.container.models import VolumeBinding
from .core.container.ports import map_ports
from .core.db.manager import ConnectionHealthWatcher
from .core.errors import KubexDBError
from .core.logging.logger import create_app_logger
from .core.runtime.bootstrap import Runtime, RuntimeOptions, bootstrap, get_app_version
from .core.security.credentials import CredentialStore
from .core.stack.provider import StackProvider
from .core.tracing.context import new_op_id


# -----------------------------
# 输出辅助
# -----------------------------
def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, default=str))


def _print_banner(settings: LocalSettings) -> None:
    if not settings.hidebanner:
        sys.stderr.write(f"kubexdb {get_app_version()}\n")


def _mask_document(obj: Any, key: str = "") -> Any:
    """脱敏根配置文档：DSN 只隐藏密码段，其余敏感字段整体替换"""
    if isinstance(obj, dict):
        return {k: _mask_document(v, k) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_mask_document(v, key) for v in obj]
    lowered = key.lower()
    if lowered == "dsn" and isinstance(obj, str):
        return redact_dsn(obj)
    if any(keyword == lowered or keyword in lowered.split("_") for keyword in SENSITIVE_KEYWORDS):
        return "******" if obj else obj
    return obj


def _parse_env(items: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise SystemExit(f"无效的环境变量: {item!r}（应为 KEY=VALUE）")
        env[key] = value
    return env


def _parse_volume(item: str) -> VolumeBinding:
    parts = item.split(":")
    if len(parts) not in (2, 3):
        raise SystemExit(f"无效的卷绑定: {item!r}（应为 HOST:CONTAINER[:MODE]）")
    return VolumeBinding(host_path=parts[0], container_path=parts[1], mode=parts[2] if len(parts) == 3 else "rw")


# -----------------------------
# 公共上下文
# -----------------------------
def _setup(args: argparse.Namespace) -> tuple[LocalSettings, RuntimeOptions]:
    settings = load_local_settings(args.env_file)
    create_app_logger(settings, debug=args.debug)
    _print_banner(settings)
    opts = RuntimeOptions.from_settings(settings, file_path=args.config_file)
    return settings, opts


def _provider(engine: ContainerEngineAdapter, opts: RuntimeOptions) -> StackProvider:
    return StackProvider(
        engine,
        CredentialStore(),
        volume_root=opts.volume_root,
        port_probe=opts.port_probe,
        host_ip=opts.host_ip,
    )


async def _keep_alive(runtime: Runtime, interval: float) -> None:
    """前台驻留，后台周期性巡检并修复连接，直到进程被中断"""
    watcher = ConnectionHealthWatcher(runtime.manager, interval=interval)
    await watcher.start()
    logger.info("已进入 keep-alive 模式，按 Ctrl+C 退出")
    try:
        await watcher.wait()
    finally:
        await watcher.stop()


async def _print_snapshot(runtime: Runtime) -> bool:
    snapshot = await runtime.health_snapshot()
    _print_json([h.to_dict() for h in snapshot])
    return all(h.status.is_available for h in snapshot)


# -----------------------------
# database 子命令
# -----------------------------
async def cmd_database_start(args: argparse.Namespace) -> int:
    settings, opts = _setup(args)
    opts.provision = True
    runtime = await bootstrap(None, opts)
    try:
        await _print_snapshot(runtime)
        if args.keep_alive:
            await _keep_alive(runtime, settings.health_interval)
    finally:
        await runtime.shutdown()
    return 0


async def cmd_database_stop(args: argparse.Namespace) -> int:
    _, opts = _setup(args)
    root = await load_or_bootstrap(opts.file_path, app_name=opts.app_name)
    engine = ContainerEngineAdapter()
    try:
        stopped = await _provider(engine, opts).stop_services(root)
    finally:
        engine.close()
    _print_json({"stopped": stopped})
    return 0


async def cmd_database_status(args: argparse.Namespace) -> int:
    _, opts = _setup(args)
    runtime = await bootstrap(None, opts)
    try:
        healthy = await _print_snapshot(runtime)
    finally:
        await runtime.shutdown()
    return 0 if healthy else 1


async def cmd_database_migrate(args: argparse.Namespace) -> int:
    settings, opts = _setup(args)
    opts.provision = True
    runtime = await bootstrap(None, opts)
    try:
        migrated = await runtime.migrate(
            dry_run=args.dry_run or None,
            reset=args.reset or None,
            force=args.force or None,
        )
        _print_json({"migrated": migrated, "dry_run": args.dry_run})
        if args.keep_alive:
            await _keep_alive(runtime, settings.health_interval)
    finally:
        await runtime.shutdown()
    return 0


# -----------------------------
# docker 子命令
# -----------------------------
@asynccontextmanager
async def _engine(args: argparse.Namespace) -> AsyncIterator[tuple[ContainerEngineAdapter, RuntimeOptions]]:
    _, opts = _setup(args)
    engine = ContainerEngineAdapter()
    try:
        await engine.initialize()
        yield engine, opts
    finally:
        engine.close()


async def cmd_docker_start(args: argparse.Namespace) -> int:
    async with _engine(args) as (engine, opts):
        if args.name:
            await engine.start_container_by_name(args.name)
            _print_json({"started": [args.name]})
            return 0

        root = await load_or_bootstrap(opts.file_path, app_name=opts.app_name)
        report = await _provider(engine, opts).start_services(root)
        _print_json({db_id: ep.redacted for db_id, ep in report.endpoints.items()})
    return 0


async def cmd_docker_stop(args: argparse.Namespace) -> int:
    async with _engine(args) as (engine, opts):
        if args.name:
            await engine.stop_container_by_name(args.name)
            _print_json({"stopped": [args.name]})
            return 0

        root = await load_or_bootstrap(opts.file_path, app_name=opts.app_name)
        _print_json({"stopped": await _provider(engine, opts).stop_services(root)})
    return 0


async def cmd_docker_restart(args: argparse.Namespace) -> int:
    async with _engine(args) as (engine, _):
        await engine.stop_container_by_name(args.name)
        await engine.start_container_by_name(args.name)
        _print_json({"restarted": [args.name]})
    return 0


async def cmd_docker_status(args: argparse.Namespace) -> int:
    async with _engine(args) as (engine, _):
        if args.name:
            info = await engine.inspect(args.name)
            if info is None:
                _print_json({"name": args.name, "status": "absent"})
                return 1
            _print_json({"name": info.name, "image": info.image, "status": info.status, "ports": info.ports})
            return 0 if info.running else 1

        containers = [c for c in await engine.list_containers() if c.name.startswith(f"{args.prefix}-")]
        _print_json([{"name": c.name, "status": c.status, "ports": c.ports} for c in containers])
    return 0


async def cmd_docker_logs(args: argparse.Namespace) -> int:
    async with _engine(args) as (engine, _):
        async for line in engine.get_container_logs(args.name, follow=args.follow, tail=args.tail):
            print(line, flush=True)
    return 0


async def cmd_docker_list(args: argparse.Namespace) -> int:
    async with _engine(args) as (engine, _):
        containers = await engine.list_containers(all_=not args.running)
        _print_json([{"id": c.id, "name": c.name, "image": c.image, "status": c.status} for c in containers])
    return 0


async def cmd_docker_list_volumes(args: argparse.Namespace) -> int:
    async with _engine(args) as (engine, _):
        volumes = await engine.list_volumes()
        if args.show_path:
            _print_json([{"name": v.name, "mountpoint": v.mountpoint} for v in volumes])
        else:
            _print_json([v.name for v in volumes])
    return 0


async def cmd_docker_create(args: argparse.Namespace) -> int:
    async with _engine(args) as (engine, _):
        volume = await engine.create_volume(args.name, args.path)
        _print_json({"name": volume.name, "mountpoint": volume.mountpoint, "labels": volume.labels})
    return 0


async def cmd_docker_add(args: argparse.Namespace) -> int:
    async with _engine(args) as (engine, opts):
        ports = []
        for item in args.port:
            host_port, _, container_port = item.partition(":")
            ports.append(map_ports(host_port, container_port or host_port, host_ip=opts.host_ip))
        service = engine.add_service(
            args.name,
            args.image,
            _parse_env(args.env),
            ports,
            [_parse_volume(v) for v in args.volume],
            command=args.cmd or None,
        )
        _print_json(service.to_dict())
        if args.start:
            info = await engine.start_service(args.name)
            _print_json({"started": info.name, "status": info.status})
    return 0


# -----------------------------
# config / version
# -----------------------------
async def cmd_config(args: argparse.Namespace) -> int:
    _, opts = _setup(args)
    root = await load_or_bootstrap(opts.file_path, app_name=opts.app_name)
    if args.show:
        _print_json(_mask_document(root.to_document()))
    else:
        print(root.file_path)
    return 0


async def cmd_version(_: argparse.Namespace) -> int:
    print(get_app_version())
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config-file", default=None, help="根配置文件路径（默认 ~/.kubexdb/database/config.json）")
    common.add_argument("-e", "--env-file", default=None, help=".env 文件路径")
    common.add_argument("-d", "--debug", action="store_true", help="输出 DEBUG 级别日志")

    parser = argparse.ArgumentParser(prog="kubexdb", description="kubexdb 数据库栈管理工具")
    sub = parser.add_subparsers(dest="command", required=True)

    # database
    p_db = sub.add_parser("database", help="数据库生命周期管理")
    db_sub = p_db.add_subparsers(dest="action", required=True)

    p = db_sub.add_parser("start", help="拉起容器并建立连接", parents=[common])
    p.add_argument("-k", "--keep-alive", action="store_true", help="保持前台运行并周期性巡检连接")
    p.set_defaults(func=cmd_database_start)

    p = db_sub.add_parser("stop", help="停止配置中启用的数据库容器", parents=[common])
    p.set_defaults(func=cmd_database_stop)

    p = db_sub.add_parser("status", help="输出每个连接的健康状态", parents=[common])
    p.set_defaults(func=cmd_database_status)

    p = db_sub.add_parser("migrate", help="调用已注册的迁移器", parents=[common])
    p.add_argument("-k", "--keep-alive", action="store_true", help="迁移完成后保持连接")
    p.add_argument("-f", "--force", action="store_true", help="强制重新应用全部迁移")
    p.add_argument("-r", "--reset", action="store_true", help="迁移前重置数据库")
    p.add_argument("--dry-run", action="store_true", help="只模拟，不落库")
    p.set_defaults(func=cmd_database_migrate)

    # docker
    p_dk = sub.add_parser("docker", help="容器与卷管理")
    dk_sub = p_dk.add_subparsers(dest="action", required=True)

    p = dk_sub.add_parser("start", help="启动容器（不带名称时按根配置协调）", parents=[common])
    p.add_argument("name", nargs="?", default=None, help="容器名")
    p.set_defaults(func=cmd_docker_start)

    p = dk_sub.add_parser("stop", help="停止容器（不带名称时停止根配置中的规范容器）", parents=[common])
    p.add_argument("name", nargs="?", default=None, help="容器名")
    p.set_defaults(func=cmd_docker_stop)

    p = dk_sub.add_parser("status", help="查看容器状态", parents=[common])
    p.add_argument("name", nargs="?", default=None, help="容器名")
    p.add_argument("--prefix", default="kubexdb", help="不带名称时按前缀过滤（默认 kubexdb）")
    p.set_defaults(func=cmd_docker_status)

    p = dk_sub.add_parser("restart", help="重启容器", parents=[common])
    p.add_argument("name", help="容器名")
    p.set_defaults(func=cmd_docker_restart)

    p = dk_sub.add_parser("logs", help="输出容器日志", parents=[common])
    p.add_argument("name", help="容器名")
    p.add_argument("-f", "--follow", action="store_true", help="持续跟随")
    p.add_argument("--tail", default="all", help="只输出最后 N 行（默认 all）")
    p.set_defaults(func=cmd_docker_logs)

    p = dk_sub.add_parser("list", help="列出容器", parents=[common])
    p.add_argument("--running", action="store_true", help="只列出运行中的容器")
    p.set_defaults(func=cmd_docker_list)

    p = dk_sub.add_parser("list-volumes", help="列出卷", parents=[common])
    p.add_argument("-p", "--show-path", action="store_true", help="同时输出挂载点")
    p.set_defaults(func=cmd_docker_list_volumes)

    p = dk_sub.add_parser("create", help="创建绑定到宿主机目录的卷", parents=[common])
    p.add_argument("name", help="卷名")
    p.add_argument("--path", required=True, help="宿主机目录")
    p.set_defaults(func=cmd_docker_create)

    p = dk_sub.add_parser("add", help="登记服务（可选立即启动）", parents=[common])
    p.add_argument("name", help="服务名（同时作为容器名）")
    p.add_argument("--image", required=True, help="镜像")
    p.add_argument("--env", action="append", default=[], help="环境变量 KEY=VALUE（可重复）")
    p.add_argument("--port", action="append", default=[], help="端口绑定 HOST:CONTAINER（可重复）")
    p.add_argument("--volume", action="append", default=[], help="卷绑定 HOST:CONTAINER[:MODE]（可重复）")
    p.add_argument("--cmd", nargs="*", default=None, help="容器启动命令")
    p.add_argument("--start", action="store_true", help="登记后立即启动")
    p.set_defaults(func=cmd_docker_add)

    # config / version
    p = sub.add_parser("config", help="输出根配置路径或内容", parents=[common])
    p.add_argument("--show", action="store_true", help="输出脱敏后的根配置")
    p.set_defaults(func=cmd_config)

    p = sub.add_parser("version", help="输出 kubexdb 版本号")
    p.set_defaults(func=cmd_version)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    new_op_id()
    try:
        return int(asyncio.run(args.func(args)))
    except KeyboardInterrupt:
        return 0
    except (KubexDBError, DockerException) as exc:
        logger.error(str(exc))
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
