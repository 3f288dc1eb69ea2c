import os
import shutil
import sys
import zipfile

import pytest

from lambda_kit import packaging
from lambda_kit.exceptions import LocalIOError
from lambda_kit.packaging import Artifact, SourceBuilder, archive_directory, remove_local_artifact


def _make_project(root) -> None:
    (root / "app.py").write_text("def handler(event, context):\n    return 'ok'\n", encoding="utf-8")
    (root / "lib").mkdir()
    (root / "lib" / "util.py").write_text("X = 1\n", encoding="utf-8")
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    (root / "lambda_kit.json").write_text("{}", encoding="utf-8")
    (root / "stale.pyc").write_bytes(b"\x00")


def test_archive_directory_keeps_relative_paths(tmp_path) -> None:
    src = tmp_path / "src"
    src.mkdir()
    _make_project(src)

    artifact = archive_directory(str(src), str(tmp_path / "out.zip"))

    assert artifact.size > 0
    assert artifact.key == "out.zip"
    with zipfile.ZipFile(artifact.path) as zf:
        names = set(zf.namelist())
    assert "app.py" in names
    assert os.path.join("lib", "util.py") in names


def test_archive_directory_default_location_and_cleanup(tmp_path) -> None:
    src = tmp_path / "src"
    src.mkdir()
    (src / "app.py").write_text("x = 1\n", encoding="utf-8")

    artifact = archive_directory(str(src))
    parent = os.path.dirname(artifact.path)

    assert os.path.basename(artifact.path) == "lambda_kit.zip"
    assert os.path.basename(parent).startswith("lambda-kit-")

    remove_local_artifact(artifact)
    assert not os.path.exists(parent)


def test_archive_directory_named_after_function(tmp_path) -> None:
    src = tmp_path / "src"
    src.mkdir()
    (src / "app.py").write_text("x = 1\n", encoding="utf-8")

    artifact = archive_directory(str(src), archive_name=packaging.artifact_name("shop-dev"))
    try:
        name = os.path.basename(artifact.path)
        assert name.startswith("shop-dev-")
        assert name.endswith(".zip")
        assert name[len("shop-dev-"):-len(".zip")].isdigit()
        assert artifact.key == name
    finally:
        remove_local_artifact(artifact)


def test_remove_local_artifact_keeps_foreign_directory(tmp_path) -> None:
    path = tmp_path / "pkg.zip"
    path.write_bytes(b"zip")

    remove_local_artifact(Artifact(path=str(path), size=3))

    assert not path.exists()
    assert tmp_path.exists()


def test_source_builder_skips_excluded_files(tmp_path, cfg) -> None:
    _make_project(tmp_path)
    cfg.dir = str(tmp_path)

    result = SourceBuilder(install_requirements=False).build(cfg)

    try:
        copied = set(os.listdir(result.package_dir))
        assert {"app.py", "lib"} <= copied
        assert ".git" not in copied
        assert "lambda_kit.json" not in copied
        assert "stale.pyc" not in copied
        assert result.handler == "app.handler"
    finally:
        shutil.rmtree(os.path.dirname(result.package_dir), ignore_errors=True)


def test_source_builder_installs_requirements(tmp_path, cfg, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "app.py").write_text("x = 1\n", encoding="utf-8")
    (tmp_path / "requirements.txt").write_text("requests\n", encoding="utf-8")
    cfg.dir = str(tmp_path)
    commands: list[list[str]] = []
    monkeypatch.setattr(packaging, "run_command", lambda cmd, **kwargs: commands.append(list(cmd)))

    result = SourceBuilder().build(cfg)

    assert commands and commands[0][:4] == [sys.executable, "-m", "pip", "install"]
    assert commands[0][commands[0].index("-t") + 1] == result.package_dir
    shutil.rmtree(os.path.dirname(result.package_dir), ignore_errors=True)


def test_source_builder_missing_dir(tmp_path, cfg) -> None:
    cfg.dir = str(tmp_path / "missing")

    with pytest.raises(LocalIOError):
        SourceBuilder().build(cfg)
