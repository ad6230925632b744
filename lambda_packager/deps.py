"""Dynamic dependency listing.

Thin wrapper around ``ldd``. Each line of ``ldd`` output looks like one of::

    libfoo.so.1 => /lib/libfoo.so.1 (0x00007f...)
    /lib64/ld-linux-x86-64.so.2 (0x00007f...)
    linux-vdso.so.1 (0x00007ffc...)
    libbar.so.2 => not found

The resolved path is always the second-to-last whitespace-delimited field.
Entries that are not real files (the vDSO, unresolved libraries) still come
through here and are dropped by the caller when it checks the disk.
"""

import logging
import pathlib
import subprocess


class DependencyError(RuntimeError):
    """Raised when the dependencies of an executable cannot be listed."""


_STATIC_MARKERS: tuple[str, ...] = (
    "not a dynamic executable",
    "statically linked",
    "Not a valid dynamic program",
)


def parse_ldd_output(text: str) -> list[str]:
    """Extract resolved library paths from ``ldd`` output.

    :param text: Raw ``ldd`` stdout.
    :returns: Distinct paths in first-seen order.
    """

    paths: list[str] = []
    seen: set[str] = set()
    for line in text.splitlines():
        fields: list[str] = line.split()
        if len(fields) < 2:
            continue
        path: str = fields[-2]
        if path in seen:
            continue
        seen.add(path)
        paths.append(path)
    return paths


def unresolved_libraries(text: str) -> list[str]:
    """Return the names ``ldd`` reported as ``not found``.

    :param text: Raw ``ldd`` stdout.
    :returns: Library names without a resolved path.
    """

    missing: list[str] = []
    for line in text.splitlines():
        stripped: str = line.strip()
        if stripped.endswith("=> not found") is True:
            missing.append(stripped.split()[0])
    return missing


def is_static_output(text: str) -> bool:
    """Check whether ``ldd`` output describes a statically linked executable.

    :param text: Combined ``ldd`` stdout and stderr.
    :returns: ``True`` if glibc's or musl's static-binary message is present.
    """

    return any(marker in text for marker in _STATIC_MARKERS)


def list_dependencies(
    executable: pathlib.Path,
    *,
    logger: logging.Logger | None = None,
) -> list[str]:
    """List the shared libraries an executable loads at start-up.

    :param executable: Path to a dynamically linked executable.
    :param logger: Optional logger for progress output.
    :returns: Distinct dependency paths as reported by ``ldd``.
    :raises DependencyError: If the executable is static or ``ldd`` fails.
    """

    if logger is None:
        logger = logging.getLogger("lambda_packager")

    cmd: list[str] = ["ldd", str(executable)]
    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"lambda-packager: running: {' '.join(cmd)}")

    proc = subprocess.run(cmd, capture_output=True, text=True, check=False)
    combined: str = proc.stdout + proc.stderr
    if is_static_output(combined) is True:
        raise DependencyError(
            f"{executable} is not dynamically linked; no dynamic loader can be resolved for it."
        )
    if proc.returncode != 0:
        raise DependencyError(
            f"ldd failed (exit={proc.returncode}) for {executable}: {proc.stderr.strip()}"
        )

    for name in unresolved_libraries(proc.stdout):
        logger.warning(f"lambda-packager: ldd could not resolve {name}; it will not be packaged")

    deps: list[str] = parse_ldd_output(proc.stdout)
    logger.info(f"lambda-packager: ldd reported {len(deps)} dependencies")
    return deps
