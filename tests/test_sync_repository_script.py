import sys
from collections.abc import Generator
from pathlib import Path

import pytest
from dulwich.repo import Repo

from cms_repo_sync.logging_config import disable_logging
from scripts.sync_repository import main


@pytest.fixture
def site(local_repo: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    monkeypatch.setenv("CMS_REPO_SYNC_CACHE_DIR", str(tmp_path / "cache"))
    local_repo.joinpath("content").mkdir()
    local_repo.joinpath("content", "a.md").write_text("# A", encoding="utf-8")
    local_repo.joinpath("static").mkdir()
    local_repo.joinpath("static", "b.png").write_bytes(b"\x89PNG")
    yield local_repo
    disable_logging()


def _run(monkeypatch: pytest.MonkeyPatch, *args: str) -> int:
    monkeypatch.setattr(sys, "argv", ["sync_repository.py", *args])
    return main()


def test_sync_local(site: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = _run(
        monkeypatch,
        "--service=local",
        "--repo=me/site",
        "sync",
        f"--directory={site}",
        "--entry-folder=content",
        "--asset-folder=static",
        "--quiet",
        "--verbose-files",
    )

    with Repo(str(site)) as repo:
        head = repo.head().decode()

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "Branch:       main" in out
    assert f"Last commit:  {head}" in out
    assert "Entries:      1" in out
    assert "Assets:       1" in out
    assert "[entry] content/a.md (3 bytes)" in out


def test_list_local(site: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = _run(monkeypatch, "--service=local", "--repo=me/site", "list", f"--directory={site}")

    lines = capsys.readouterr().out.splitlines()
    assert exit_code == 0
    assert [line.split()[-1] for line in lines] == ["content/a.md", "static/b.png"]


def test_not_a_repository(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("CMS_REPO_SYNC_CACHE_DIR", str(tmp_path / "cache"))

    exit_code = _run(monkeypatch, "--service=local", "--repo=me/site", "list", f"--directory={tmp_path}")

    assert exit_code == 1
    assert "is not a Git repository root" in capsys.readouterr().err
    disable_logging()


def test_repository_is_required(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CMS_REPO_SYNC_REPO", raising=False)

    assert _run(monkeypatch, "--service=local", "list") == 1
    disable_logging()
