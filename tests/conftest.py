"""Shared fixtures: stand-in sys/os modules and tool archive builders."""

import io
import os
import sys
import textwrap
import types
import uuid
import zipfile
from pathlib import Path
from typing import Dict, Optional

import pytest


@pytest.fixture
def fake_system():
    """Module standing in for sys, so the guard never touches pytest's streams."""
    system = types.ModuleType("fake_sys")
    system.stdout = io.StringIO()
    system.stderr = io.StringIO()
    system.exit = sys.exit
    system.argv = ["fake"]
    return system


@pytest.fixture
def fake_process():
    """Module standing in for os."""
    process = types.ModuleType("fake_os")
    process._exit = os._exit
    return process


def write_tool(
    location: Path,
    files: Dict[str, str],
    directory: bool = False,
) -> Path:
    """Write ``files`` as a zip archive (or a plain directory) at ``location``."""
    if directory:
        for name, content in files.items():
            target = location / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        return location

    with zipfile.ZipFile(location, 'w') as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return location


@pytest.fixture
def make_tool(tmp_path):
    """
    Build a tool archive from module source.

    ``{module}`` in ``source``, ``entry`` or ``manifest`` is replaced with a
    module name unique to the call, so tests never share sys.modules entries.
    Returns (location, module_name).
    """
    def factory(
        source: str,
        entry: str = "{module}",
        manifest: Optional[str] = None,
        directory: bool = False,
        with_manifest: bool = True,
        extra_files: Optional[Dict[str, str]] = None,
    ):
        module = f"guest_{uuid.uuid4().hex[:12]}"
        if manifest is None:
            manifest = f"Manifest-Version: 1.0\nMain-Class: {entry}\n"
        files = {
            f"{module}.py": textwrap.dedent(source).replace("{module}", module),
        }
        if with_manifest:
            files["META-INF/MANIFEST.MF"] = manifest.replace("{module}", module)
        for name, content in (extra_files or {}).items():
            files[name.replace("{module}", module)] = textwrap.dedent(content)

        suffix = "" if directory else ".zip"
        location = write_tool(tmp_path / f"{module}{suffix}", files, directory=directory)
        return location, module

    return factory
