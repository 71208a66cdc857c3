from .logging import logger
from .volume import RcloneVolume
from .exceptions import VolumeNotFound, InvalidVolumeAttributes

REQUIRED_ATTRIBUTES = ("remote", "path")


class VolumeLocator:
    """
    Resolve volume handles back to their remote and path by looking at the PersistentVolumes of the cluster.
    Every lookup lists all PersistentVolumes; there is no cache.
    """

    def __init__(self, kube):
        self.kube = kube

    def resolve(self, volume_id) -> RcloneVolume:
        for pv in self.kube.core.list_persistent_volume().items:
            csi = pv.spec.csi
            if csi is None or csi.volume_handle != volume_id:
                continue
            attributes = csi.volume_attributes or {}
            for attribute in REQUIRED_ATTRIBUTES:
                if not attributes.get(attribute):
                    raise InvalidVolumeAttributes(volume_id=volume_id, attribute=attribute)
            logger.debug(f"{volume_id} resolved to PersistentVolume {pv.metadata.name}")
            return RcloneVolume(id=volume_id, remote=attributes["remote"], remote_path=attributes["path"])
        raise VolumeNotFound(volume_id=volume_id)
