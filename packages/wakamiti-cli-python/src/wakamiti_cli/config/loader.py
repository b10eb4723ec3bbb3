"""
Endpoint 发现与加载（properties 文件 + 环境变量覆盖）。

发现顺序（`wakamiti.properties`）：
1) `WAKAMITI_PROPERTIES` 指向的文件（相对路径相对 cwd；必须存在）
2) `<cwd>/wakamiti.properties`
3) `<WAKAMITI_HOME>/wakamiti.properties`（设置了 `WAKAMITI_HOME` 时）
4) 启动脚本/可执行文件所在目录

合并规则：
- 若声明了 `effective.properties`，加载该文件（相对路径相对首个文件所在目录）并覆盖合并；
- `WAKAMITI_HOST` / `WAKAMITI_PORT`（非空白）最后覆盖。

必填键：`server.host`、`server.port`（1-65535）、`server.auth.origin`。
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from wakamiti_cli.config.properties import load_properties
from wakamiti_cli.core.errors import ConfigError

logger = logging.getLogger(__name__)

PROPERTIES_FILENAME = "wakamiti.properties"
EFFECTIVE_PROPERTIES_KEY = "effective.properties"

HOST_KEY = "server.host"
PORT_KEY = "server.port"
ORIGIN_KEY = "server.auth.origin"


class Endpoint(BaseModel):
    """
    远端执行服务地址（不可变）。

    字段：
    - host / port：服务地址
    - origin：访问控制 token，提交与通道握手都通过 `Origin` 头回显
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    origin: str = Field(min_length=1)

    @field_validator("host", "origin", mode="before")
    @classmethod
    def _strip(cls, v: object) -> object:
        """字符串字段去两侧空白（空白串随后由 min_length 拒绝）。"""

        return v.strip() if isinstance(v, str) else v

    @property
    def base(self) -> str:
        """`host:port`。"""

        return f"{self.host}:{self.port}"

    @property
    def submit_url(self) -> str:
        """命令提交地址。"""

        return f"http://{self.base}/exec"

    @property
    def stream_url(self) -> str:
        """事件通道地址。"""

        return f"ws://{self.base}/exec/out"


def _get_env_nonempty(key: str, env: Mapping[str, str]) -> Optional[str]:
    """读取 env 并返回非空白字符串（否则视为未设置）。"""

    v = env.get(key)
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def candidate_paths(*, cwd: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> List[Path]:
    """
    返回 `wakamiti.properties` 的候选路径（按优先级，去重保序）。

    说明：
    - `WAKAMITI_PROPERTIES` 的存在性检查在 `discover_properties_path` 里做。
    """

    env = os.environ if env is None else env
    base = Path(cwd) if cwd is not None else Path.cwd()
    out: List[Path] = []

    explicit = _get_env_nonempty("WAKAMITI_PROPERTIES", env)
    if explicit:
        p = Path(explicit).expanduser()
        out.append(p if p.is_absolute() else base / p)

    out.append(base / PROPERTIES_FILENAME)

    home = _get_env_nonempty("WAKAMITI_HOME", env)
    if home:
        out.append(Path(home).expanduser() / PROPERTIES_FILENAME)

    if sys.argv and sys.argv[0]:
        out.append(Path(sys.argv[0]).resolve().parent / PROPERTIES_FILENAME)

    seen: set[Path] = set()
    uniq: List[Path] = []
    for p in out:
        if p in seen:
            continue
        seen.add(p)
        uniq.append(p)
    return uniq


def discover_properties_path(*, cwd: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Path:
    """
    找到第一个存在的 `wakamiti.properties`。

    异常：
    - ConfigError(CONFIG_NOT_FOUND)：显式指定的文件不存在，或所有候选都不存在
    """

    env = os.environ if env is None else env
    paths = candidate_paths(cwd=cwd, env=env)
    if _get_env_nonempty("WAKAMITI_PROPERTIES", env) and not paths[0].is_file():
        raise ConfigError(
            code="CONFIG_NOT_FOUND",
            message=f"properties file not found: {paths[0]}",
            details={"path": str(paths[0])},
        )
    for p in paths:
        if p.is_file():
            return p
    raise ConfigError(
        code="CONFIG_NOT_FOUND",
        message=f"could not find {PROPERTIES_FILENAME} in any of: {[str(p) for p in paths]}",
        details={"searched": [str(p) for p in paths]},
    )


def load_merged_properties(path: Path) -> Dict[str, str]:
    """
    读取主 properties 文件，并合并其声明的 `effective.properties`。

    异常：
    - ConfigError(CONFIG_UNREADABLE)：主文件不可读
    - ConfigError(CONFIG_EFFECTIVE_UNREADABLE)：effective 文件不可读
    """

    try:
        props = load_properties(path)
    except OSError as exc:
        raise ConfigError(
            code="CONFIG_UNREADABLE",
            message=f"could not read {path}: {exc}",
            details={"path": str(path)},
        ) from exc

    effective = props.get(EFFECTIVE_PROPERTIES_KEY, "").strip()
    if not effective:
        return props

    effective_path = Path(effective).expanduser()
    if not effective_path.is_absolute():
        effective_path = Path(path).parent / effective_path
    try:
        props.update(load_properties(effective_path))
    except OSError as exc:
        raise ConfigError(
            code="CONFIG_EFFECTIVE_UNREADABLE",
            message=f"could not read effective properties file at {effective_path}: {exc}",
            details={"path": str(effective_path)},
        ) from exc
    logger.debug("Merged effective properties from %s", effective_path)
    return props


def _invalid(message: str) -> ConfigError:
    """构造统一前缀的校验错误。"""

    return ConfigError(code="CONFIG_INVALID", message=f"invalid configuration: {message}", details={})


def endpoint_from_properties(props: Mapping[str, str], *, env: Optional[Mapping[str, str]] = None) -> Endpoint:
    """
    从已合并的键值构造 Endpoint（环境变量覆盖 host/port）。

    异常：
    - ConfigError(CONFIG_INVALID)：缺少必填键或端口非法
    """

    env = os.environ if env is None else env
    host = _get_env_nonempty("WAKAMITI_HOST", env) or props.get(HOST_KEY, "").strip()
    port_raw = _get_env_nonempty("WAKAMITI_PORT", env) or props.get(PORT_KEY, "").strip()
    origin = props.get(ORIGIN_KEY, "").strip()

    if not host:
        raise _invalid(f"{HOST_KEY} is required")
    if not port_raw:
        raise _invalid(f"{PORT_KEY} is required")
    if not port_raw.isdigit():
        raise _invalid(f"{PORT_KEY} must be a valid TCP port (1-65535)")
    if not origin:
        raise _invalid(f"{ORIGIN_KEY} is required")

    try:
        return Endpoint(host=host, port=int(port_raw), origin=origin)
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        if "port" in fields:
            raise _invalid(f"{PORT_KEY} must be a valid TCP port (1-65535)") from exc
        raise _invalid(", ".join(fields) or str(exc)) from exc


def load_endpoint(*, cwd: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Endpoint:
    """
    发现、读取并校验配置，返回 Endpoint。

    参数：
    - cwd：当前目录（默认 `Path.cwd()`）
    - env：环境变量映射（默认 `os.environ`）

    异常：
    - ConfigError：任何发现/读取/校验失败
    """

    path = discover_properties_path(cwd=cwd, env=env)
    logger.debug("Loading configuration from %s", path)
    return endpoint_from_properties(load_merged_properties(path), env=env)
