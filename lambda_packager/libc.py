"""Host C library discovery.

This module is intentionally small and "pragmatic":

- It asks each supported package manager (dpkg, rpm, pacman, apk) which files
  belong to the system C library package.
- It does not try to detect the distribution up front. Every probe runs; on a
  real host at most one of them has anything to say, the others come back
  empty.
"""

from dataclasses import dataclass, field
import logging
import os
import pathlib
import platform
import re
import shutil
import subprocess
from collections.abc import Iterable, Iterator, Sequence


LOADER_PREFIX: str = "ld-"

_SHARED_OBJECT_RE: re.Pattern[str] = re.compile(r"\.so(\.\d+)?$")

OS_RELEASE_PATHS: tuple[pathlib.Path, ...] = (
    pathlib.Path("/etc/os-release"),
    pathlib.Path("/usr/lib/os-release"),
)


def is_loader_name(filename: str) -> bool:
    """Check whether a library filename names the dynamic loader.

    :param filename: Bare filename (no directory).
    :returns: ``True`` for ``ld-linux-x86-64.so.2``, ``ld-musl-aarch64.so.1``, etc.
    """

    return filename.startswith(LOADER_PREFIX)


def filter_shared_objects(lines: Iterable[str]) -> list[str]:
    """Keep only entries ending in ``.so`` or ``.so.<digits>``.

    :param lines: Candidate file paths, one per entry.
    :returns: Matching entries, stripped, in input order.
    """

    kept: list[str] = []
    for line in lines:
        entry: str = line.strip()
        if entry and _SHARED_OBJECT_RE.search(entry) is not None:
            kept.append(entry)
    return kept


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``os-release`` key/value text.

    :param text: File contents.
    :returns: Mapping of keys to unquoted values.
    """

    values: dict[str, str] = {}
    for raw in text.splitlines():
        line: str = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        values[key.strip()] = value
    return values


def read_os_release(paths: Sequence[pathlib.Path] = OS_RELEASE_PATHS) -> dict[str, str]:
    """Read OS identification metadata from the first ``os-release`` file found.

    :param paths: Candidate locations, in priority order.
    :returns: Parsed metadata, or an empty mapping when no file exists.
    """

    for path in paths:
        if path.is_file() is True:
            return parse_os_release(path.read_text(encoding="utf-8", errors="replace"))
    return {}


class LibcProbe:
    """Asks one package manager for the files of the C library package.

    Subclasses set :attr:`tool` and implement :meth:`query_command`.
    """

    name: str = "base"
    tool: str = ""

    def detect(self, os_release: dict[str, str]) -> bool:
        """Check whether this probe applies to the current host.

        :param os_release: Parsed ``os-release`` metadata.
        :returns: ``True`` if the package manager tool is available.
        """

        return shutil.which(self.tool) is not None

    def query_command(self) -> list[str]:
        raise NotImplementedError

    def normalize(self, entry: str) -> str:
        return entry

    def list_files(self, *, logger: logging.Logger | None = None) -> list[str]:
        """Query the package manager for shared objects owned by libc.

        Failures are not errors here; any of them yields an empty list.

        :param logger: Optional logger for debug output.
        :returns: Absolute shared-object paths.
        """

        if logger is None:
            logger = logging.getLogger("lambda_packager")

        cmd: list[str] = self.query_command()
        if logger.isEnabledFor(logging.DEBUG) is True:
            logger.debug(f"lambda-packager: {self.name}: running: {' '.join(cmd)}")

        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            logger.debug(f"lambda-packager: {self.name}: could not run {cmd[0]}: {e}")
            return []
        if proc.returncode != 0:
            logger.debug(f"lambda-packager: {self.name}: query exited with {proc.returncode}")
            return []

        return [self.normalize(entry) for entry in filter_shared_objects(proc.stdout.splitlines())]


class DpkgProbe(LibcProbe):
    """Debian family."""

    name = "dpkg"
    tool = "dpkg-query"
    package: str = "libc6"

    def query_command(self) -> list[str]:
        return [self.tool, "--listfiles", self.package]


class RpmProbe(LibcProbe):
    """RPM family (Fedora, RHEL, Amazon Linux)."""

    name = "rpm"
    tool = "rpm"

    def query_command(self) -> list[str]:
        return [self.tool, "--query", "--list", f"glibc.{platform.machine()}"]


class PacmanProbe(LibcProbe):
    """Arch family. Only trusted when ``os-release`` says so."""

    name = "pacman"
    tool = "pacman"

    def detect(self, os_release: dict[str, str]) -> bool:
        ids: set[str] = {os_release.get("ID", "")}
        ids.update(os_release.get("ID_LIKE", "").split())
        if ids.isdisjoint({"arch", "archlinux"}) is True:
            return False
        return super().detect(os_release)

    def query_command(self) -> list[str]:
        return [self.tool, "--query", "--list", "--quiet", "glibc"]


class ApkProbe(LibcProbe):
    """Alpine. ``apk`` lists package contents relative to ``/``."""

    name = "apk"
    tool = "apk"

    def query_command(self) -> list[str]:
        return [self.tool, "info", "--contents", "musl"]

    def normalize(self, entry: str) -> str:
        if entry.startswith("/") is True:
            return entry
        return "/" + entry


def default_probes() -> list[LibcProbe]:
    return [DpkgProbe(), RpmProbe(), PacmanProbe(), ApkProbe()]


@dataclass(frozen=True, slots=True)
class LibcFileSet:
    """Files owned by the host C library package.

    Membership matches either the literal path or its symlink-resolved form, so
    ``/lib/x86_64-linux-gnu/libc.so.6`` from ``ldd`` still matches
    ``/usr/lib/x86_64-linux-gnu/libc.so.6`` on merged-``/usr`` hosts.

    :ivar paths: Paths in discovery order, without duplicates.
    """

    paths: tuple[str, ...]
    _canonical: frozenset[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        canonical: set[str] = set(self.paths)
        canonical.update(os.path.realpath(p) for p in self.paths)
        object.__setattr__(self, "_canonical", frozenset(canonical))

    @classmethod
    def from_paths(cls, paths: Iterable[str]) -> "LibcFileSet":
        return cls(paths=tuple(dict.fromkeys(paths)))

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False
        if path in self._canonical:
            return True
        return os.path.realpath(path) in self._canonical

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths)

    def __len__(self) -> int:
        return len(self.paths)


def collect_libc_files(
    *,
    probes: Sequence[LibcProbe] | None = None,
    os_release: dict[str, str] | None = None,
    logger: logging.Logger | None = None,
) -> LibcFileSet:
    """Run every probe and union what they report.

    :param probes: Probes to run (defaults to all four supported managers).
    :param os_release: Parsed ``os-release`` metadata (read from disk if omitted).
    :param logger: Optional logger for progress output.
    :returns: The host's libc file set (possibly empty).
    """

    if logger is None:
        logger = logging.getLogger("lambda_packager")
    if probes is None:
        probes = default_probes()
    if os_release is None:
        os_release = read_os_release()

    found: list[str] = []
    for probe in probes:
        if probe.detect(os_release) is False:
            logger.debug(f"lambda-packager: {probe.name}: not applicable on this host")
            continue
        files: list[str] = probe.list_files(logger=logger)
        if files:
            logger.info(f"lambda-packager: {probe.name} reported {len(files)} libc files")
        found.extend(files)

    return LibcFileSet.from_paths(found)
