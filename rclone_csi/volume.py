import re
import hashlib
from dataclasses import dataclass

# Kubernetes object names and label values are capped at 63 characters
MAX_NAME_LENGTH = 63
MOUNTER_PREFIX = "mounter-"

LABEL_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_.-]")
LABEL_UNTRIMMED_ENDS = re.compile(r"^[^A-Za-z0-9]+|[^A-Za-z0-9]+$")


@dataclass(frozen=True)
class RcloneVolume:
    """A volume backed by a path on a preconfigured rclone remote"""

    id: str  # CSI volume handle
    remote: str = ""
    remote_path: str = ""

    @property
    def normalized_id(self) -> str:
        return LABEL_INVALID_CHARS.sub("-", self.id).lower()

    @property
    def deployment_name(self) -> str:
        """Name shared by the mounter Deployment and its config Secret"""
        name = f"{MOUNTER_PREFIX}{self.id}"
        return name[:MAX_NAME_LENGTH].lower()

    @property
    def remote_spec(self) -> str:
        return f"{self.remote}:/{self.remote_path.lstrip('/')}"

    def labels(self, config_data: str) -> dict:
        """
        Fingerprint of the mounter objects for this volume: the volume handle plus a hash of the rclone config.
        Objects whose labels differ from these are stale and must be recreated.
        """
        return dict(volumeid=label_value(self.normalized_id), hash=config_hash(config_data))


def label_value(value: str) -> str:
    # label values must begin and end with an alphanumeric character
    return LABEL_UNTRIMMED_ENDS.sub("", value[:MAX_NAME_LENGTH])


def config_hash(config_data: str) -> str:
    return hashlib.sha256(config_data.encode()).hexdigest()[:MAX_NAME_LENGTH]
