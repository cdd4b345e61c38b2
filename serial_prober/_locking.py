import contextlib
import fcntl
import logging
import os
import termios
import typeguard
from pathlib import Path

from serial_prober import _exceptions

log = logging.getLogger("serial_prober.locking")

_CREATE_TRIES = 10


def lock_path_for(port: str) -> Path:
    """The UUCP-style /var/lock file guarding 'port'"""

    parts = Path(port).parts[-2:]
    if len(parts) == 2 and parts[1].isdigit() and parts[0].startswith("pt"):
        return Path(f"/var/lock/LCK..{parts[0]}.{parts[1]}")
    return Path(f"/var/lock/LCK..{parts[-1]}")


@contextlib.contextmanager
@typeguard.typechecked
def using_lock_file(port: str):
    lock_path = lock_path_for(port)
    for _try in range(_CREATE_TRIES):
        created = _try_lock_file(port=port, lock_path=lock_path)
        if created is not None:
            break
    else:
        message = "Serial port busy (lock file retries exceeded)"
        raise _exceptions.SerialOpenBusy(message, port)

    try:
        yield
    finally:
        if created:
            _release_lock_file(lock_path)


@contextlib.contextmanager
@typeguard.typechecked
def using_fd_lock(port: str, fd: int):
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        log.debug("Acquired flock(LOCK_EX) on %s", port)
    except BlockingIOError as exc:
        message = "Serial port busy (flock claimed)"
        raise _exceptions.SerialOpenBusy(message, port) from exc
    except OSError:
        log.warning("Can't lock (flock) %s", port, exc_info=True)

    try:
        fcntl.ioctl(fd, termios.TIOCEXCL)
        log.debug("Acquired TIOCEXCL on %s", port)
    except OSError:
        log.warning("Can't lock (TIOCEXCL) %s", port, exc_info=True)

    try:
        yield
    finally:
        try:
            fcntl.ioctl(fd, termios.TIOCNXCL)
            log.debug("Released TIOCEXCL on %s", port)
        except OSError:
            log.warning("Can't release TIOCEXCL on %s", port, exc_info=True)

        try:
            fcntl.flock(fd, fcntl.LOCK_UN | fcntl.LOCK_NB)
            log.debug("Released flock on %s", port)
        except OSError:
            log.warning("Can't release flock on %s", port, exc_info=True)


def _try_lock_file(*, port: str, lock_path: Path) -> bool | None:
    """True if we created the lock, False if we may proceed without it,
    None if creation raced with someone else and should be retried."""

    if not lock_path.parent.is_dir():
        log.debug("No lock directory %s", lock_path.parent)
        return False

    if owner_pid := _lock_file_owner(lock_path):
        if owner_pid == os.getpid():
            log.debug("We already own %s", lock_path)
            return False

        log.debug("PID %d owns %s", owner_pid, lock_path)
        message = f"Serial port busy ({lock_path}: pid={owner_pid})"
        raise _exceptions.SerialOpenBusy(message, port)

    try:
        with lock_path.open("xt") as lock_file:
            lock_file.write(f"{os.getpid():>10d}\n")
    except FileExistsError:
        log.warning("Conflict creating %s", lock_path)
        return None
    except OSError:
        log.warning("Can't create %s", lock_path, exc_info=True)
        return False

    log.debug("Claimed %s", lock_path)
    return True


def _release_lock_file(lock_path: Path) -> None:
    if _lock_file_owner(lock_path) != os.getpid():
        return

    try:
        lock_path.unlink()
        log.debug("Released %s", lock_path)
    except OSError:
        log.warning("Can't release %s", lock_path, exc_info=True)


def _lock_file_owner(lock_path: Path) -> int | None:
    try:
        with lock_path.open("rt") as lock_file:
            owner_pid = int(lock_file.read(128).strip())
        if owner_pid <= 0:
            raise ValueError(f"Bad PID {owner_pid}")
        try:
            os.kill(owner_pid, 0)  # check if process exists
        except PermissionError:
            pass  # exists, but belongs to another user
        return owner_pid
    except FileNotFoundError:
        return None
    except (ProcessLookupError, ValueError):
        try:
            lock_path.unlink()
            log.debug("Removed bad/stale %s", lock_path)
        except OSError:
            log.warning("Can't remove %s", lock_path, exc_info=True)
        return None
    except OSError:
        log.warning("Can't check %s", lock_path, exc_info=True)
        return None
