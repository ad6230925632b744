"""Pytest configuration."""
import os
import sys
from pathlib import Path

import pytest

root = Path(__file__).resolve().parent.parent
if str(root) not in sys.path:
    sys.path.insert(0, str(root))


@pytest.fixture
def fake_host(tmp_path):
    """A fake build host: an executable, a non-libc library and a libc with symlinks."""
    host = tmp_path / "host"
    libdir = host / "lib"
    libdir.mkdir(parents=True)

    exe = host / "myfunc"
    exe.write_bytes(b"\x7fELF fake executable")
    exe.chmod(0o755)

    (libdir / "libfoo.so.1").write_bytes(b"foo")
    (libdir / "ld-linux-x86-64.so.2").write_bytes(b"loader")
    (libdir / "libc-2.31.so").write_bytes(b"libc")
    os.symlink("libc-2.31.so", libdir / "libc.so.6")
    (libdir / "libm.so.6").write_bytes(b"libm")

    return {
        "exe": exe,
        "libfoo": str(libdir / "libfoo.so.1"),
        "loader": str(libdir / "ld-linux-x86-64.so.2"),
        "libc_real": str(libdir / "libc-2.31.so"),
        "libc_link": str(libdir / "libc.so.6"),
        "libm": str(libdir / "libm.so.6"),
    }
