import grpc
from easypy.exceptions import TException


class Abort(Exception):
    @property
    def code(self):
        return self.args[0]

    @property
    def message(self):
        return self.args[1]


class MissingParameter(Abort):
    def __init__(self, param: str, section: str = "parameters"):
        self.param = param
        self.section = section

    @property
    def code(self):
        return grpc.StatusCode.INVALID_ARGUMENT

    @property
    def message(self):
        return (
            f"Parameter {self.param!r} cannot be empty string or None."
            f" Please provide a valid value for this parameter "
            f"in the {self.section} section of StorageClass or PersistentVolume"
        )


class MissingSecret(Abort):
    def __init__(self, key: str):
        self.key = key

    @property
    def code(self):
        return grpc.StatusCode.INVALID_ARGUMENT

    @property
    def message(self):
        return (
            f"Secret key {self.key!r} not found. Did you set "
            f"csi.storage.k8s.io/provisioner-secret-name or csi.storage.k8s.io/node-publish-secret-name?"
        )


class VolumeNotFound(Abort):
    def __init__(self, volume_id: str):
        self.volume_id = volume_id

    @property
    def code(self):
        return grpc.StatusCode.NOT_FOUND

    @property
    def message(self):
        return f"Volume {self.volume_id} not found"


class InvalidVolumeAttributes(Abort):
    """PersistentVolume was found but lacks an attribute required to mount it"""

    def __init__(self, volume_id: str, attribute: str):
        self.volume_id = volume_id
        self.attribute = attribute

    @property
    def code(self):
        return grpc.StatusCode.FAILED_PRECONDITION

    @property
    def message(self):
        return f"Volume {self.volume_id} is missing the {self.attribute!r} volume attribute"


class RcloneCommandFailed(TException):
    template = "rclone {verb} failed on {target!r} (exit code {retcode}): {output!r}"


class MountTimeout(TException):
    template = "Timed out waiting for {path} to become a mount point ({timeout}s)"


class DeletionTimeout(TException):
    template = "Timed out waiting for {kind} {namespace}/{name} to be deleted ({timeout}s)"
