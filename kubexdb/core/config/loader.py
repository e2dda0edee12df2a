from __future__ import annotations

import asyncio
import json
import os
import secrets
import tempfile
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import ValidationError

from .constants import (
    CONFIG_DIR_MODE,
    CONFIG_FILE_MODE,
    DEFAULT_DB_HOST,
    DEFAULT_DB_ID,
    DEFAULT_DB_NAME,
    DEFAULT_DB_SCHEMA,
    DEFAULT_DB_USER,
    DEFAULT_PORTS,
    DEFAULT_ROOT_NAME,
    PASSWORD_ALPHABET,
    PASSWORD_LENGTH,
    AppConstants,
)
from .dsn import build_dsn
from .enums import DBType
from .models import DBConfigSpec, RootConfig
from .path_settings import get_path_settings
from ..errors import ConfigNotFound, ConfigParseError

_YAML_SUFFIXES = frozenset({".yaml", ".yml"})


def generate_random_password(length: int = PASSWORD_LENGTH) -> str:
    """生成随机密码（字母表 [A-Za-z0-9_-]，使用 secrets 保证密码学强度）"""
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def default_config_path() -> Path:
    """平台默认的根配置路径（~/.kubexdb/database/config.json，可被 KUBEXDB_CONFIGFILE 覆盖）"""
    return get_path_settings().config_file


def default_root_config(file_path: str | os.PathLike[str], app_name: str = AppConstants.DEFAULT_APP_NAME) -> RootConfig:
    """合成首次运行使用的默认根配置（单个 PostgreSQL 实例）

    Args:
        file_path: 配置的持久化位置
        app_name: 写入 application_name 选项的应用名

    Returns:
        RootConfig: 包含一个 PostgreSQL 条目、40 位随机密码与计算好的 DSN 的根配置
    """
    password = generate_random_password()
    port = DEFAULT_PORTS[DBType.POSTGRES.value]
    sslmode = "disable"

    db = DBConfigSpec(
        id=DEFAULT_DB_ID,
        name=DEFAULT_DB_NAME,
        is_default=True,
        enabled=True,
        type=DBType.POSTGRES,
        host=DEFAULT_DB_HOST,
        port=str(port),
        user=DEFAULT_DB_USER,
        password=password,
        db_name=DEFAULT_DB_NAME,
        schema_name=DEFAULT_DB_SCHEMA,
        options={
            "sslmode": sslmode,
            "max_connections": 50,
            "connect_timeout": 10,
            "application_name": app_name,
            "pool_max_lifetime": "30m",
        },
        dsn=build_dsn(
            DBType.POSTGRES,
            user=DEFAULT_DB_USER,
            password=password,
            host=DEFAULT_DB_HOST,
            port=port,
            db_name=DEFAULT_DB_NAME,
            sslmode=sslmode,
        ),
    )

    return RootConfig(
        name=DEFAULT_ROOT_NAME,
        file_path=str(Path(file_path).expanduser().absolute()),
        enabled=True,
        databases=[db],
    )


def _decode(path: Path, raw: str) -> dict[str, Any]:
    """按扩展名解码配置文本（.yaml/.yml 为 YAML，其余按 JSON）"""
    try:
        if path.suffix.lower() in _YAML_SUFFIXES:
            data = yaml.safe_load(raw)
        else:
            data = json.loads(raw)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigParseError(f"无法解析配置文件 {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigParseError(f"配置文件 {path} 顶层必须是对象，实际为 {type(data).__name__}")
    return data


def _encode(path: Path, document: dict[str, Any]) -> str:
    if path.suffix.lower() in _YAML_SUFFIXES:
        return yaml.safe_dump(document, sort_keys=False, allow_unicode=True)
    return json.dumps(document, ensure_ascii=False, indent=2) + "\n"


def _read_root_config(path: Path) -> RootConfig:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigNotFound(f"无法读取配置文件 {path}: {exc}") from exc

    data = _decode(path, raw)
    try:
        root = RootConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigParseError(f"配置文件 {path} 结构非法: {exc}") from exc

    if not root.file_path:
        root = root.model_copy(update={"file_path": str(path.absolute())})
    return root


def _atomic_write(path: Path, content: str) -> None:
    """同步原子写入：临时文件 + fsync + chmod + os.replace，将在线程池中执行"""
    parent = path.parent
    if not parent.exists():
        parent.mkdir(parents=True, exist_ok=True, mode=CONFIG_DIR_MODE)
        # mkdir 的 mode 受 umask 影响，显式再设置一次
        os.chmod(parent, CONFIG_DIR_MODE)

    with tempfile.NamedTemporaryFile(
            mode="w", encoding="utf-8", dir=parent, prefix=f".{path.name}.", delete=False
    ) as tmp:
        tmp.write(content)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name

    try:
        os.chmod(tmp_name, CONFIG_FILE_MODE)
        os.replace(tmp_name, path)
    except OSError:
        os.remove(tmp_name)
        raise


async def load_root_config(path: str | os.PathLike[str]) -> RootConfig:
    """读取并校验已存在的根配置

    Raises:
        ConfigNotFound: 文件不存在或不可读
        ConfigParseError: 内容无法解码或结构非法
    """
    target = Path(path).expanduser()
    if not target.is_file():
        raise ConfigNotFound(f"配置文件不存在: {target}")
    return await asyncio.to_thread(_read_root_config, target)


async def save_root_config(root: RootConfig) -> Path:
    """原子地持久化根配置（文件 0640，父目录 0750）

    Returns:
        Path: 写入的文件路径

    Raises:
        ConfigNotFound: root.file_path 为空
    """
    if not root.file_path:
        raise ConfigNotFound("RootConfig.file_path 为空，无法持久化")

    target = Path(root.file_path).expanduser()
    content = _encode(target, root.to_document())

    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, _atomic_write, target, content)
    logger.debug(f"根配置已写入 {target}")
    return target


async def load_or_bootstrap(
        path: str | os.PathLike[str] | None = None,
        *,
        app_name: str = AppConstants.DEFAULT_APP_NAME,
) -> RootConfig:
    """读取根配置；首次运行时合成并持久化默认配置

    执行以下步骤：
        1. path 为空时使用平台默认路径
        2. 文件存在：按扩展名解码并校验
        3. 文件不存在：合成单 PostgreSQL 默认配置并原子写盘

    Args:
        path: 配置文件路径
        app_name: 合成默认配置时写入的应用名

    Returns:
        RootConfig: 已加载或新合成的根配置

    Raises:
        ConfigNotFound: 路径不可读且无法合成（如父目录不可写）
        ConfigParseError: 文件内容非法
    """
    target = Path(path).expanduser() if path else default_config_path()

    if target.exists():
        logger.info(f"正在加载根配置: {target}")
        return await load_root_config(target)

    logger.info(f"未找到根配置，正在生成默认配置: {target}")
    root = default_root_config(target, app_name=app_name)
    try:
        await save_root_config(root)
    except OSError as exc:
        raise ConfigNotFound(f"无法在 {target} 生成默认配置: {exc}") from exc

    logger.success(f"默认根配置已生成: {target}")
    return root
