"""Deployment archive builder.

This module implements the packaging pipeline for a custom serverless runtime:

- It lists the executable's shared libraries with ``ldd`` and classifies each
  one against the host's C library file set.
- It stages ``bin/<executable>``, ``lib/`` (non-libc libraries, the dynamic
  loader and, optionally, the whole C library) and a generated ``bootstrap``.
- It zips the staging directory, keeping symlinks as links, and moves the
  archive to the output directory.
"""

from dataclasses import dataclass
import importlib.util
import logging
import os
import pathlib
import shutil
import stat
import tempfile
import time
import zipfile

from lambda_packager.deps import list_dependencies
from lambda_packager.libc import LibcFileSet, collect_libc_files, is_loader_name


class PackagingError(RuntimeError):
    """Raised when packaging fails."""


EXECUTION_ENV: str = "lambda-cpp"

_ZIP_EPOCH: tuple[int, ...] = (1980, 1, 1, 0, 0, 0)

_BOOTSTRAP_BUNDLED_LIBC: str = """\
#!/bin/bash
set -euo pipefail
export AWS_EXECUTION_ENV=__LP_EXECUTION_ENV__
exec $LAMBDA_TASK_ROOT/lib/__LP_LOADER__ --library-path $LAMBDA_TASK_ROOT/lib \
$LAMBDA_TASK_ROOT/bin/__LP_EXECUTABLE__ ${_HANDLER}
"""

# Host library paths stay ahead of the bundled lib/.
_BOOTSTRAP_HOST_LIBC: str = """\
#!/bin/bash
set -euo pipefail
export AWS_EXECUTION_ENV=__LP_EXECUTION_ENV__
export LD_LIBRARY_PATH=${LD_LIBRARY_PATH:+$LD_LIBRARY_PATH:}$LAMBDA_TASK_ROOT/lib
exec $LAMBDA_TASK_ROOT/bin/__LP_EXECUTABLE__ ${_HANDLER}
"""


@dataclass(frozen=True, slots=True)
class StagingLayout:
    """Directory layout mirrored into the archive.

    :ivar root: Staging root (becomes the archive root).
    :ivar bin_dir: Holds the executable.
    :ivar lib_dir: Holds every bundled shared object.
    :ivar bootstrap_path: Generated launcher script.
    """

    root: pathlib.Path
    bin_dir: pathlib.Path
    lib_dir: pathlib.Path
    bootstrap_path: pathlib.Path


@dataclass(frozen=True, slots=True)
class AssemblyResult:
    """Outcome of populating ``lib/``.

    :ivar loader: Filename of the dynamic loader, or ``None`` if unresolved.
    :ivar libraries: Filenames placed in ``lib/``, in copy order.
    """

    loader: str | None
    libraries: tuple[str, ...]


def _validate_compresslevel(compresslevel: int) -> None:
    """Validate a zip compression level.

    :param compresslevel: Compression level (0-9).
    :raises PackagingError: If the level is out of range.
    """

    if compresslevel < 0 or compresslevel > 9:
        raise PackagingError(f"Invalid compresslevel={compresslevel}; expected 0-9.")


def _check_required_tools() -> None:
    """Fail early when a tool the pipeline depends on is missing.

    :raises PackagingError: If ``ldd`` or zlib is unavailable.
    """

    if shutil.which("ldd") is None:
        raise PackagingError("ldd is not installed or not on PATH.")
    if importlib.util.find_spec("zlib") is None:
        raise PackagingError("zlib is unavailable; cannot write deflate-compressed zip archives.")


def _create_layout(root: pathlib.Path) -> StagingLayout:
    layout = StagingLayout(
        root=root,
        bin_dir=root / "bin",
        lib_dir=root / "lib",
        bootstrap_path=root / "bootstrap",
    )
    layout.bin_dir.mkdir(parents=True, exist_ok=True)
    layout.lib_dir.mkdir(parents=True, exist_ok=True)
    return layout


def _copy_library(*, src: pathlib.Path, lib_dir: pathlib.Path, dereference: bool) -> pathlib.Path:
    """Copy a shared object into ``lib_dir``, replacing whatever is there.

    :param src: Source file or symlink.
    :param lib_dir: Destination directory.
    :param dereference: Copy the link target's contents instead of the link.
    :returns: Destination path.
    """

    dst: pathlib.Path = lib_dir / src.name
    if os.path.lexists(dst) is True:
        dst.unlink()
    shutil.copy2(src, dst, follow_symlinks=dereference)
    return dst


def assemble_libraries(
    *,
    dependencies: list[str],
    libc_files: LibcFileSet,
    lib_dir: pathlib.Path,
    include_libc: bool,
    logger: logging.Logger | None = None,
) -> AssemblyResult:
    """Populate ``lib_dir`` and resolve the dynamic loader.

    Direct libc dependencies are skipped, except the loader, which is always
    copied since the launcher needs one either way. Everything else ``ldd``
    reported is copied with symlinks dereferenced. When ``include_libc`` is set,
    the whole libc file set follows, with symlinks kept as links.

    :param dependencies: Paths reported by ``ldd``.
    :param libc_files: Files owned by the host C library package.
    :param lib_dir: Destination directory.
    :param include_libc: Bundle the complete C library.
    :param logger: Optional logger for progress output.
    :returns: Resolved loader and copied library names.
    """

    if logger is None:
        logger = logging.getLogger("lambda_packager")

    loader: str | None = None
    copied: list[str] = []

    for dep in dependencies:
        src = pathlib.Path(dep)
        if src.exists() is False:
            if logger.isEnabledFor(logging.DEBUG) is True:
                logger.debug(f"lambda-packager: skipping {dep} (not a file on disk)")
            continue

        if dep in libc_files:
            if is_loader_name(src.name) is False:
                continue
            if loader is None:
                loader = src.name
            _copy_library(src=src, lib_dir=lib_dir, dereference=True)
            copied.append(src.name)
            continue

        _copy_library(src=src, lib_dir=lib_dir, dereference=True)
        copied.append(src.name)

    if include_libc is True:
        for entry in libc_files:
            src = pathlib.Path(entry)
            if os.path.lexists(src) is False:
                logger.warning(f"lambda-packager: libc file {entry} is listed but missing; skipping")
                continue
            if is_loader_name(src.name) is True:
                if loader is None:
                    loader = src.name
                    _copy_library(src=src, lib_dir=lib_dir, dereference=True)
                    copied.append(src.name)
                continue
            _copy_library(src=src, lib_dir=lib_dir, dereference=False)
            copied.append(src.name)

    return AssemblyResult(loader=loader, libraries=tuple(dict.fromkeys(copied)))


def render_bootstrap(*, executable_name: str, loader: str, include_libc: bool) -> str:
    """Render the ``bootstrap`` launcher the runtime executes.

    :param executable_name: Filename of the packaged executable under ``bin/``.
    :param loader: Filename of the dynamic loader under ``lib/``.
    :param include_libc: Whether the archive carries its own C library.
    :returns: Script text.
    """

    template: str = _BOOTSTRAP_BUNDLED_LIBC if include_libc is True else _BOOTSTRAP_HOST_LIBC
    script: str = template.replace("__LP_EXECUTION_ENV__", EXECUTION_ENV)
    script = script.replace("__LP_LOADER__", loader)
    script = script.replace("__LP_EXECUTABLE__", executable_name)
    return script


def _write_bootstrap(path: pathlib.Path, script: str) -> None:
    path.write_text(script, encoding="utf-8")
    path.chmod(0o755)


def _zip_dir_to_path(*, root: pathlib.Path, out_path: pathlib.Path, compresslevel: int) -> None:
    """Zip a directory tree, storing symlinks as links.

    :param root: Root directory to archive.
    :param out_path: Output zip path.
    :param compresslevel: Deflate compression level.
    """

    out_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(
        out_path,
        "w",
        compression=zipfile.ZIP_DEFLATED,
        compresslevel=compresslevel,
        strict_timestamps=False,
    ) as zf:
        paths: list[pathlib.Path] = []
        for p in root.rglob("*"):
            if p.is_symlink() is True or p.is_file() is True:
                paths.append(p)
        for p in sorted(paths):
            arcname: str = str(p.relative_to(root)).replace(os.sep, "/")
            if p.is_symlink() is True:
                date_time: tuple[int, ...] = max(time.localtime(p.lstat().st_mtime)[0:6], _ZIP_EPOCH)
                info = zipfile.ZipInfo(arcname, date_time=date_time)
                info.create_system = 3
                info.external_attr = (stat.S_IFLNK | 0o777) << 16
                zf.writestr(info, os.readlink(p), compress_type=zipfile.ZIP_STORED)
                continue
            zf.write(p, arcname=arcname)


def package_executable(
    *,
    executable_path: pathlib.Path,
    include_libc: bool = True,
    output_dir: pathlib.Path | None = None,
    logger: logging.Logger | None = None,
    compresslevel: int = 6,
) -> pathlib.Path:
    """Build a deployment archive for an executable.

    :param executable_path: Compiled executable to package.
    :param include_libc: Bundle the host C library and launch through its loader.
    :param output_dir: Directory receiving ``<name>.zip`` (defaults to the cwd).
    :param logger: Optional logger for progress output.
    :param compresslevel: Deflate compression level.
    :returns: Path of the written archive.
    :raises PackagingError: If packaging fails.
    """

    if logger is None:
        logger = logging.getLogger("lambda_packager")

    if executable_path.is_file() is False:
        raise PackagingError(f"Executable does not exist or is not a file: {executable_path}")
    _validate_compresslevel(compresslevel)
    _check_required_tools()

    if output_dir is None:
        output_dir = pathlib.Path.cwd()
    executable_name: str = executable_path.name
    executable_path = executable_path.resolve()
    output_path: pathlib.Path = output_dir.resolve() / f"{executable_name}.zip"

    t_total0: float = time.perf_counter()
    logger.info(f"lambda-packager: executable={executable_path}")
    logger.info(f"lambda-packager: include_libc={include_libc}")
    logger.info(f"lambda-packager: output={output_path}")

    dependencies: list[str] = list_dependencies(executable_path, logger=logger)
    libc_files: LibcFileSet = collect_libc_files(logger=logger)
    if len(libc_files) == 0:
        logger.warning("lambda-packager: no supported package manager reported any libc files")
    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"lambda-packager: dependencies={dependencies}")
        logger.debug(f"lambda-packager: libc_files={list(libc_files)}")

    with tempfile.TemporaryDirectory(prefix="lambda_packager_build_") as td:
        build_root: pathlib.Path = pathlib.Path(td)
        layout: StagingLayout = _create_layout(build_root / "staging")

        shutil.copy2(executable_path, layout.bin_dir / executable_name)

        result: AssemblyResult = assemble_libraries(
            dependencies=dependencies,
            libc_files=libc_files,
            lib_dir=layout.lib_dir,
            include_libc=include_libc,
            logger=logger,
        )
        if result.loader is None:
            raise PackagingError(
                "Failed to identify, locate or package the loader. "
                "Please file an issue on GitHub including the name of your Linux distribution."
            )
        logger.info(
            f"lambda-packager: staged {len(result.libraries)} libraries (loader={result.loader})"
        )

        _write_bootstrap(
            layout.bootstrap_path,
            render_bootstrap(
                executable_name=executable_name,
                loader=result.loader,
                include_libc=include_libc,
            ),
        )

        tmp_zip: pathlib.Path = build_root / output_path.name
        _zip_dir_to_path(root=layout.root, out_path=tmp_zip, compresslevel=compresslevel)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(tmp_zip, output_path)

    t_total1: float = time.perf_counter()
    out_size: int = output_path.stat().st_size
    logger.info(
        f"lambda-packager: created {output_path} ({out_size / (1024 * 1024):.1f} MiB) "
        f"in {t_total1 - t_total0:.2f}s"
    )
    return output_path
