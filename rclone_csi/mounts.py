import os
from time import sleep

import psutil
from easypy.timing import Timer
from plumbum import local, ProcessExecutionError

from .logging import logger
from .exceptions import MountTimeout


def get_mount(target_path):
    # the mount table still lists FUSE mounts whose daemon died, unlike os.path.ismount
    target_path = str(target_path)
    for m in psutil.disk_partitions(all=True):
        if m.mountpoint == target_path:
            return m


def is_mountpoint(target_path) -> bool:
    return get_mount(target_path) is not None


def is_healthy(target_path) -> bool:
    """A mount is considered healthy if its root can be listed"""
    try:
        os.listdir(target_path)
    except OSError as exc:
        logger.warning(f"Listing {target_path} failed: {exc}")
        return False
    return True


def wait_until_mounted(path, poll_interval, timeout):
    """Poll the mount table every ``poll_interval`` seconds until ``path`` is mounted, for up to ``timeout`` seconds"""
    timer = Timer(expiration=timeout)
    while True:
        if is_mountpoint(path):
            logger.info(f"{path} is mounted")
            return
        if timer.expired:
            raise MountTimeout(path=path, timeout=timeout)
        sleep(poll_interval)


def unmount(target_path, attempts):
    """Unmount ``target_path`` until it no longer shows in the mount table. Returns False if it is still mounted."""
    for _ in range(attempts):
        if not is_mountpoint(target_path):
            logger.info(f"{target_path} is not mounted")
            return True
        try:
            local.cmd.umount(target_path)
        except ProcessExecutionError as exc:
            if "not mounted" in exc.stderr:
                logger.info(f"umount failed - {target_path} is not mounted (race?)")
                return True
            raise
    return not is_mountpoint(target_path)
