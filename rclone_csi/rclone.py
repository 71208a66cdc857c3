"""
Interaction with the rclone binary: composing ``rclone mount`` arguments for the mounter
container, and running one-shot rclone commands against a remote from the controller.
"""
import os
from contextlib import contextmanager
from tempfile import mkdtemp

from plumbum import cmd, ProcessExecutionError

from .logging import logger
from .exceptions import RcloneCommandFailed

RC_PORT = 5572
CONFIG_KEY = "rclone.conf"
MOUNT_FLAG_PREFIX = "mount/"


def default_mount_flags(volume) -> dict:
    # an empty value means a flag without a value
    return {
        "rc": "",
        "rc-addr": f"0.0.0.0:{RC_PORT}",
        "rc-enable-metrics": "",
        "rc-web-gui": "",
        "rc-web-gui-no-open-browser": "",
        "rc-no-auth": "",
        "volname": volume.id,
        "devname": volume.id,
        "cache-info-age": "72h",
        "cache-chunk-clean-interval": "15m",
        "dir-cache-time": "60s",
        "vfs-cache-mode": "full",
        "vfs-write-back": "10s",
        "vfs-cache-max-size": "1g",
        "allow-other": "true",
        "allow-non-empty": "true",
    }


def extract_mount_flags(volume_context) -> dict:
    """Pick ``mount/<flag>`` entries out of a volume context, stripping the prefix"""
    return {
        key[len(MOUNT_FLAG_PREFIX):]: value
        for key, value in (volume_context or {}).items()
        if key.startswith(MOUNT_FLAG_PREFIX)
    }


def _format_flag(name, value):
    return f"--{name}={value}" if value else f"--{name}"


def compose_mount_args(volume, target_path, overrides=None, defaults=None):
    """
    Build the argument list of ``rclone mount`` for the given volume.
    Default flags are only emitted when not overridden; every override is emitted as given.
    Flags are not validated here - rclone itself rejects unknown flags.
    """
    overrides = overrides or {}
    defaults = default_mount_flags(volume) if defaults is None else defaults
    args = ["mount", volume.remote_spec, str(target_path)]
    args.extend(_format_flag(k, v) for k, v in defaults.items() if k not in overrides)
    args.extend(_format_flag(k, v) for k, v in overrides.items())
    return args


def rclone(verb, remote, path, **flags):
    """Run ``rclone <verb> <remote>:<path> [--flag=value]...``, logging its output"""
    target = f"{remote}:{path}"
    args = [verb, target, *(f"--{k}={v}" for k, v in flags.items())]
    logger.info(f"executing rclone {verb} on {target}")
    try:
        cmd.rclone[args] & logger.pipe_info(f"rclone {verb} >>")
    except ProcessExecutionError as exc:
        output = "\n".join(filter(None, [exc.stdout, exc.stderr]))
        raise RcloneCommandFailed(verb=verb, target=target, retcode=exc.retcode, output=output)


@contextmanager
def temp_config(config_data: str):
    """Write rclone config material to a private temporary file for the duration of the block"""
    tmpdir = mkdtemp(prefix="rclone-csi-")
    config_path = os.path.join(tmpdir, CONFIG_KEY)
    try:
        with open(config_path, "w") as f:
            f.write(config_data)
        os.chmod(config_path, 0o600)
        yield config_path
    finally:
        if os.path.exists(config_path):
            os.remove(config_path)
        os.rmdir(tmpdir)


def create_volume_dir(volume_name, remote, remote_path, config_data):
    """Create ``<remote_path>/<volume_name>`` on the remote; returns the new path"""
    path = f"{remote_path}/{volume_name}"
    with temp_config(config_data) as config_path:
        rclone("mkdir", remote, path, config=config_path)
    return path


def delete_volume_dir(volume, config_data):
    """Remove the (empty) directory tree of a volume from its remote"""
    with temp_config(config_data) as config_path:
        rclone("rmdirs", volume.remote, volume.remote_path, config=config_path)
