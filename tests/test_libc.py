"""Tests for libc probes and the libc file set."""
import os
import subprocess
from unittest.mock import MagicMock, patch

from lambda_packager import libc

DPKG_LISTFILES = """\
/.
/etc
/etc/ld.so.conf.d/x86_64-linux-gnu.conf
/lib/x86_64-linux-gnu/libc.so.6
/lib/x86_64-linux-gnu/libm.so.6
/lib/x86_64-linux-gnu/libc_malloc_debug.so.0
/lib/x86_64-linux-gnu/libthread_db.so.1
/lib64/ld-linux-x86-64.so.2
/usr/lib/x86_64-linux-gnu/gconv/gconv-modules
/usr/lib/x86_64-linux-gnu/gconv/IBM037.so
/usr/share/doc/libc6/copyright
"""

APK_CONTENTS = """\
musl-1.2.4-r2 contains:
lib/ld-musl-x86_64.so.1
lib/libc.musl-x86_64.so.1

"""


def _completed(stdout="", returncode=0):
    return subprocess.CompletedProcess(["probe"], returncode, stdout=stdout, stderr="")


def test_filter_shared_objects():
    """Only .so and .so.<digits> entries survive the filter."""
    result = libc.filter_shared_objects(DPKG_LISTFILES.splitlines())
    assert result == [
        "/lib/x86_64-linux-gnu/libc.so.6",
        "/lib/x86_64-linux-gnu/libm.so.6",
        "/lib/x86_64-linux-gnu/libc_malloc_debug.so.0",
        "/lib/x86_64-linux-gnu/libthread_db.so.1",
        "/lib64/ld-linux-x86-64.so.2",
        "/usr/lib/x86_64-linux-gnu/gconv/IBM037.so",
    ]


def test_filter_shared_objects_rejects_partial_versions():
    """Multi-component versions such as .so.1.2 are not matched."""
    assert libc.filter_shared_objects(["/lib/libx.so.1.2", "/lib/libx.so.conf"]) == []


def test_is_loader_name():
    assert libc.is_loader_name("ld-linux-x86-64.so.2") is True
    assert libc.is_loader_name("ld-musl-aarch64.so.1") is True
    assert libc.is_loader_name("libc.so.6") is False


def test_parse_os_release():
    """Quoted values are unquoted; comments and blanks are skipped."""
    text = '# comment\nNAME="Arch Linux"\nID=arch\n\nID_LIKE=\'archlinux\'\n'
    assert libc.parse_os_release(text) == {
        "NAME": "Arch Linux",
        "ID": "arch",
        "ID_LIKE": "archlinux",
    }


def test_read_os_release_falls_back(tmp_path):
    """The first existing file wins; no file at all yields an empty mapping."""
    fallback = tmp_path / "os-release"
    fallback.write_text("ID=alpine\n")
    assert libc.read_os_release([tmp_path / "missing", fallback]) == {"ID": "alpine"}
    assert libc.read_os_release([tmp_path / "missing"]) == {}


def test_dpkg_probe_lists_libc6():
    probe = libc.DpkgProbe()
    with patch.object(libc.subprocess, "run", return_value=_completed(DPKG_LISTFILES)) as run:
        files = probe.list_files()
    assert run.call_args[0][0] == ["dpkg-query", "--listfiles", "libc6"]
    assert "/lib64/ld-linux-x86-64.so.2" in files
    assert "/usr/share/doc/libc6/copyright" not in files


def test_rpm_probe_uses_machine_arch():
    with patch.object(libc.platform, "machine", return_value="aarch64"):
        assert libc.RpmProbe().query_command() == ["rpm", "--query", "--list", "glibc.aarch64"]


def test_apk_probe_makes_paths_absolute():
    with patch.object(libc.subprocess, "run", return_value=_completed(APK_CONTENTS)):
        files = libc.ApkProbe().list_files()
    assert files == ["/lib/ld-musl-x86_64.so.1", "/lib/libc.musl-x86_64.so.1"]


def test_probe_failure_is_silent():
    """A non-zero exit (e.g. package not installed) yields no files."""
    proc = _completed("package glibc.x86_64 is not installed\n", returncode=1)
    with patch.object(libc.subprocess, "run", return_value=proc):
        assert libc.RpmProbe().list_files() == []


def test_probe_missing_tool_is_silent():
    with patch.object(libc.subprocess, "run", side_effect=FileNotFoundError("rpm")):
        assert libc.RpmProbe().list_files() == []


def test_pacman_probe_requires_arch_os_release():
    """pacman is only trusted on hosts that identify as Arch."""
    probe = libc.PacmanProbe()
    with patch.object(libc.shutil, "which", return_value="/usr/bin/pacman"):
        assert probe.detect({"ID": "debian"}) is False
        assert probe.detect({"ID": "arch"}) is True
        assert probe.detect({"ID": "manjaro", "ID_LIKE": "arch"}) is True
    with patch.object(libc.shutil, "which", return_value=None):
        assert probe.detect({"ID": "arch"}) is False


def test_collect_libc_files_equals_single_manager_output():
    """With one manager present the set is exactly its filtered list."""
    with patch.object(libc.shutil, "which", side_effect=lambda t: "/usr/bin/dpkg-query" if t == "dpkg-query" else None):
        with patch.object(libc.subprocess, "run", return_value=_completed(DPKG_LISTFILES)) as run:
            files = libc.collect_libc_files(os_release={"ID": "debian"})
    assert run.call_count == 1
    assert list(files) == libc.filter_shared_objects(DPKG_LISTFILES.splitlines())


def test_collect_libc_files_unions_all_probes():
    """Every applicable probe runs and their results are concatenated."""
    first = MagicMock(name="first")
    first.detect.return_value = True
    first.list_files.return_value = ["/lib/a.so", "/lib/b.so.1"]
    second = MagicMock(name="second")
    second.detect.return_value = False
    third = MagicMock(name="third")
    third.detect.return_value = True
    third.list_files.return_value = ["/lib/b.so.1", "/lib/c.so"]

    files = libc.collect_libc_files(probes=[first, second, third], os_release={})
    assert list(files) == ["/lib/a.so", "/lib/b.so.1", "/lib/c.so"]
    second.list_files.assert_not_called()


def test_libc_file_set_matches_resolved_paths(tmp_path):
    """A dependency path that is a symlink to a libc file is still libc."""
    real_dir = tmp_path / "usr" / "lib"
    real_dir.mkdir(parents=True)
    (real_dir / "libc.so.6").write_bytes(b"libc")
    os.symlink(real_dir, tmp_path / "lib")

    files = libc.LibcFileSet.from_paths([str(real_dir / "libc.so.6")])
    assert str(tmp_path / "lib" / "libc.so.6") in files
    assert str(tmp_path / "lib" / "libfoo.so.1") not in files
    assert len(files) == 1
