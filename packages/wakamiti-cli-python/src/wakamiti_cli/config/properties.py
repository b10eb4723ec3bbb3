"""
Java 风格 `.properties` 读取器（刻意保持规则小而可预测）。

支持：
- `#` 开头的注释行与空行；
- 每行按第一个 `=` 切分，key/value 两侧去空白；没有 `=` 的行忽略；
- 转义：`\\:` `\\=` `\\ ` `\\\\` `\\#` `\\!`（其它反斜杠原样保留）；
- `${user.home}` 替换为用户主目录；
- `${other.key}` 迭代替换，至多 5 轮；无法解析（或循环引用）的引用保留为字面文本。
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, Optional

MAX_SUBSTITUTION_PASSES = 5

_ESCAPABLE = frozenset(":= \\#!")
_REFERENCE_RE = re.compile(r"\$\{([^}]+)\}")


def unescape_value(value: str) -> str:
    """去掉受支持字符前的反斜杠；其它反斜杠保持不变。"""

    out: list[str] = []
    i = 0
    n = len(value)
    while i < n:
        c = value[i]
        if c == "\\" and i + 1 < n and value[i + 1] in _ESCAPABLE:
            out.append(value[i + 1])
            i += 2
            continue
        out.append(c)
        i += 1
    return "".join(out)


def _substitute(props: Dict[str, str]) -> None:
    """
    原地做 `${key}` 迭代替换（有界轮数）。

    说明：
    - 每一轮对每个值做一次全量替换，引用使用“当前”值；
    - 某一轮没有任何变化即提前结束。
    """

    for _ in range(MAX_SUBSTITUTION_PASSES):
        changed = False
        for key, value in props.items():

            def _lookup(m: re.Match[str]) -> str:
                """把已知 key 替换为其当前值，未知引用原样返回。"""

                name = m.group(1)
                if name in props:
                    return props[name]
                return m.group(0)

            new_value = _REFERENCE_RE.sub(_lookup, value)
            if new_value != value:
                props[key] = new_value
                changed = True
        if not changed:
            return


def parse_properties(text: str, *, user_home: Optional[str] = None) -> Dict[str, str]:
    """
    解析 properties 文本。

    参数：
    - text：文件全文
    - user_home：`${user.home}` 的替换值（默认 `Path.home()`；无法确定时不替换）

    返回：
    - dict[str, str]：替换完成后的键值
    """

    props: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        props[key.strip()] = unescape_value(value.strip())

    home = user_home
    if home is None:
        try:
            home = str(Path.home())
        except RuntimeError:
            home = None
    if home is not None:
        for key, value in props.items():
            props[key] = value.replace("${user.home}", home)

    _substitute(props)
    return props


def load_properties(path: Path, *, user_home: Optional[str] = None) -> Dict[str, str]:
    """
    读取并解析 properties 文件。

    异常：
    - OSError：文件不存在或不可读（由调用方决定如何分类）
    """

    return parse_properties(Path(path).read_text(encoding="utf-8"), user_home=user_home)
