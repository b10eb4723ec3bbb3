from __future__ import annotations

import re
import sys
from pathlib import Path


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def test_package_is_importable_without_install() -> None:
    src = _repo_root() / "packages" / "wakamiti-cli-python" / "src"
    sys.path.insert(0, str(src))

    import wakamiti_cli
    from wakamiti_cli.cli.main import main  # noqa: F401

    assert Path(wakamiti_cli.__file__).resolve().is_relative_to(src.resolve())


def test_pyproject_version_matches_package_version() -> None:
    """
    版本护栏：`pyproject.toml` 的 `[project].version` 必须与 `wakamiti_cli.__version__` 一致。
    """

    try:
        import tomllib  # py311+
    except ModuleNotFoundError:  # pragma: no cover
        import tomli as tomllib  # type: ignore[no-redef]

    root = _repo_root()
    data = tomllib.loads((root / "pyproject.toml").read_text(encoding="utf-8"))
    init_text = (root / "packages" / "wakamiti-cli-python" / "src" / "wakamiti_cli" / "__init__.py").read_text(
        encoding="utf-8"
    )
    match = re.search(r"""^__version__\s*=\s*["']([^"']+)["']\s*$""", init_text, re.MULTILINE)

    assert match is not None
    assert data["project"]["version"] == match.group(1)


def test_console_script_points_at_cli_main() -> None:
    text = (_repo_root() / "pyproject.toml").read_text(encoding="utf-8")
    assert 'wakamiti = "wakamiti_cli.cli.main:main"' in text
