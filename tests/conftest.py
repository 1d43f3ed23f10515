import sys
from pathlib import Path
from typing import Iterable

import pytest


def _ensure_repo_on_path() -> None:
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))


_ensure_repo_on_path()


@pytest.fixture
def write_lines():
    def _write(path: Path, lines: Iterable[str]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def source_root(tmp_path: Path) -> Path:
    return tmp_path / "source"


@pytest.fixture
def upstream(source_root: Path) -> Path:
    return source_root / "upstream"


@pytest.fixture
def data_dir(upstream: Path) -> Path:
    path = upstream / "domain-list-community" / "data"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def read_lines():
    def _read(path: Path) -> list[str]:
        return path.read_text(encoding="utf-8").splitlines()

    return _read
