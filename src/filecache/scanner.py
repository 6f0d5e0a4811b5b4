"""Directory scanning and batch deletion with bounded concurrency."""

import logging
import os
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, as_completed, wait
from typing import Callable, Iterable, List, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_SCAN_CONCURRENCY = 8
DEFAULT_UNLINK_CONCURRENCY = 5


class ScannedFile(NamedTuple):
    """A regular file found on disk."""

    path: str
    size: int
    last_access_time: int  # milliseconds


def _list_dir(
    directory: str, exclude: Optional[Callable[[str], bool]]
) -> Tuple[List[ScannedFile], List[str]]:
    """List one directory, returning its regular files and subdirectories."""
    files = []
    subdirs = []
    with os.scandir(directory) as it:
        for entry in it:
            if exclude is not None and exclude(entry.name):
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    subdirs.append(entry.path)
                elif entry.is_file(follow_symlinks=False):
                    stats = entry.stat(follow_symlinks=False)
                    files.append(
                        ScannedFile(
                            entry.path, stats.st_size, stats.st_atime_ns // 1_000_000
                        )
                    )
            except OSError as e:
                # Vanished between listing and stat
                logger.debug(f"Skipping {entry.path}: {e}")
    return files, subdirs


def _list_subdir(
    directory: str, exclude: Optional[Callable[[str], bool]]
) -> Tuple[List[ScannedFile], List[str]]:
    try:
        return _list_dir(directory, exclude)
    except OSError as e:
        logger.warning(f"Error reading directory {directory}: {e}")
        return [], []


def scan_directory(
    root: os.PathLike,
    concurrency: int = DEFAULT_SCAN_CONCURRENCY,
    exclude: Optional[Callable[[str], bool]] = None,
) -> List[ScannedFile]:
    """Recursively collect size and access time for every regular file.

    At most ``concurrency`` directories are listed at the same time.
    Unreadable subdirectories are logged and skipped.

    Args:
        root: Directory to scan
        concurrency: Maximum simultaneous directory listings
        exclude: Predicate on entry names to skip at any depth

    Returns:
        One ScannedFile per regular file

    Raises:
        OSError: If ``root`` itself cannot be listed
    """
    root = os.fspath(root)
    files, subdirs = _list_dir(root, exclude)
    if not subdirs:
        return files

    with ThreadPoolExecutor(max_workers=max(int(concurrency), 1)) as executor:
        pending = {executor.submit(_list_subdir, d, exclude) for d in subdirs}
        while pending:
            done, pending = wait(pending, return_when=FIRST_COMPLETED)
            for future in done:
                found, nested = future.result()
                files.extend(found)
                for d in nested:
                    pending.add(executor.submit(_list_subdir, d, exclude))

    logger.debug(f"Scanned {root}: {len(files)} files")
    return files


def _unlink(path: str) -> Optional[str]:
    """Delete one file. Returns the path on failure, None on success."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        # Already gone (another process evicted it)
        return None
    except OSError as e:
        logger.debug(f"Error unlinking file {path}: {e}")
        return path
    return None


def unlink_paths(
    paths: Iterable[str], concurrency: int = DEFAULT_UNLINK_CONCURRENCY
) -> List[str]:
    """Delete files with at most ``concurrency`` deletions in flight.

    Every path is attempted independently; a missing file counts as deleted.

    Returns:
        Paths that could not be deleted
    """
    targets = [p for p in paths if isinstance(p, str) and p]
    if not targets:
        return []

    failed = []
    with ThreadPoolExecutor(max_workers=max(int(concurrency), 1)) as executor:
        futures = [executor.submit(_unlink, path) for path in targets]
        for future in as_completed(futures):
            result = future.result()
            if result is not None:
                failed.append(result)

    logger.debug(f"Unlinked {len(targets) - len(failed)} of {len(targets)} files")
    return failed
