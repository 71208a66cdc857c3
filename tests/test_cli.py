import json
import shlex
from unittest.mock import patch

from rclone_csi.__main__ import main


def run(capsys, *argv):
    with patch("sys.argv", ["rclone-csi", *argv]):
        main()
    return capsys.readouterr().out


def test_mount_args(capsys):
    out = run(capsys, "mount-args", "pvc-1", "s3", "bucket/pvc-1", "/mnt/target", "-o", "vfs-cache-mode=off", "-o", "read-only")
    args = shlex.split(out)

    assert args[:4] == ["rclone", "mount", "s3:/bucket/pvc-1", "/mnt/target"]
    assert args.count("--vfs-cache-mode=off") == 1
    assert "--vfs-cache-mode=full" not in args
    assert args[-1] == "--read-only"


def test_info(capsys):
    info = json.loads(run(capsys, "info"))
    assert info["name"] == "csi-rclone"
    assert "rclone_image" in info
