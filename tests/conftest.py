import importlib
import shutil
import tempfile
import textwrap
import uuid

import pytest


@pytest.fixture
def handler_module(tmp_path):
    """Write a handler module into tmp_path; returns (import_root, module_name)."""
    def _write(source: str, name: str = None):
        name = name or f"fn_handler_{uuid.uuid4().hex[:10]}"
        (tmp_path / f"{name}.py").write_text(textwrap.dedent(source), encoding="utf-8")
        importlib.invalidate_caches()
        return str(tmp_path), name
    return _write


@pytest.fixture
def socket_dir():
    # AF_UNIX paths are limited to ~100 bytes, pytest's tmp_path can be longer
    path = tempfile.mkdtemp(prefix="fnw-")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture(autouse=True)
def _clean_worker_env(monkeypatch):
    import os
    for key in list(os.environ):
        if key.startswith("FNWORKER_"):
            monkeypatch.delenv(key, raising=False)
