import socket

from plumbum import local
from plumbum.typed_env import TypedEnv

from easypy.tokens import (
    Token,
    CONTROLLER_AND_NODE,
    CONTROLLER,
    NODE,
)


class Config(TypedEnv):
    class Path(TypedEnv.Str):
        convert = staticmethod(local.path)

    class Float(TypedEnv.Str):
        convert = staticmethod(float)

    plugin_name, plugin_version, git_commit, ci_pipe = (
        open("version.info").read().strip().split()
    )
    plugin_name = TypedEnv.Str("X_CSI_PLUGIN_NAME", default=plugin_name)

    log_level = TypedEnv.Str("X_CSI_LOG_LEVEL", default="info")
    node_id = TypedEnv.Str("NODE_ID", default=socket.getfqdn())
    namespace = TypedEnv.Str("POD_NAMESPACE", default="default")
    worker_threads = TypedEnv.Int("X_CSI_WORKER_THREADS", default=10)
    kubeconfig = Path("X_CSI_KUBECONFIG", default=None)

    rclone_image = TypedEnv.Str("X_CSI_RCLONE_IMAGE", default="rclone/rclone:1.59.2")
    mount_timeout = Float("X_CSI_MOUNT_TIMEOUT", default=60.0)  # seconds
    mount_poll_interval = Float("X_CSI_MOUNT_POLL_INTERVAL", default=0.1)  # seconds
    unmount_attempts = TypedEnv.Int("X_CSI_UNMOUNT_ATTEMPTS", default=10)

    _mode = TypedEnv.Str("X_CSI_MODE", default="controller_and_node")
    _endpoint = TypedEnv.Str("CSI_ENDPOINT", default="unix:///var/run/csi.sock")

    @property
    def mode(self):
        mode = Token(self._mode.upper())
        assert mode in {CONTROLLER_AND_NODE, CONTROLLER, NODE}, f"invalid mode: {mode}"
        return mode

    @property
    def endpoint(self):
        return self._endpoint.removeprefix("tcp://")
