import sys
import inspect
from pathlib import Path
from tempfile import gettempdir
from typing import List
from unittest.mock import MagicMock

import pytest
from plumbum import local
from easypy.bunch import Bunch
from kubernetes.client import (
    ApiException,
    V1CSIPersistentVolumeSource,
    V1HostPathVolumeSource,
    V1ObjectMeta,
    V1PersistentVolume,
    V1PersistentVolumeList,
    V1PersistentVolumeSpec,
)

ROOT = Path(__file__).resolve().parents[1]
# Extend python import path to get rclone_csi package (and its csi.proto) from here
sys.path += [ROOT.as_posix()]

with local.cwd(gettempdir()) as tempdir:
    # Temporary change working directory and create version.info file in order to allow reading
    # driver name, version and git commit by Config.
    tempdir["version.info"].open("w").write("csi-rclone v0.0.0 #### local")
    from rclone_csi.server import CsiController, CsiNode, Config
    import rclone_csi.csi_types as types

# Restore original methods on CsiController and CsiNode in order to get rid of Instrumented logging layer.
for cls in (CsiController, CsiNode):
    for name, _ in inspect.getmembers(cls.__base__, inspect.isfunction):
        if name.startswith("_"):
            continue
        func = getattr(cls, name)
        setattr(cls, name, func.__wrapped__)

# Load configuration
import rclone_csi.server

rclone_csi.server.CONF = Config()


# ----------------------------------------------------------------------------------------------------------------------
# Helper classes
# ----------------------------------------------------------------------------------------------------------------------


def not_found():
    return ApiException(status=404, reason="Not Found")


class FakeObjectStore:
    """Namespaced objects of one kind, with the read/create/delete semantics of the API server"""

    def __init__(self):
        self.objects = {}
        self.calls = []
        self.delete_bodies = []

    def read(self, name, namespace):
        self.calls.append(("read", name))
        try:
            return self.objects[namespace, name]
        except KeyError:
            raise not_found() from None

    def create(self, namespace, body):
        name = body.metadata.name
        self.calls.append(("create", name))
        if (namespace, name) in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        self.objects[namespace, name] = body
        return body

    def delete(self, name, namespace, body=None):
        self.calls.append(("delete", name))
        self.delete_bodies.append(body)
        if self.objects.pop((namespace, name), None) is None:
            raise not_found()

    def get(self, name, namespace="rclone"):
        return self.objects.get((namespace, name))

    def mutations(self):
        return [call for call in self.calls if call[0] != "read"]


class FakeCoreV1Api:
    def __init__(self):
        self.secrets = FakeObjectStore()
        self.persistent_volumes = []
        self.read_namespaced_secret = self.secrets.read
        self.create_namespaced_secret = self.secrets.create
        self.delete_namespaced_secret = self.secrets.delete

    def list_persistent_volume(self):
        return V1PersistentVolumeList(items=list(self.persistent_volumes))


class FakeAppsV1Api:
    def __init__(self):
        self.deployments = FakeObjectStore()
        self.read_namespaced_deployment = self.deployments.read
        self.create_namespaced_deployment = self.deployments.create
        self.delete_namespaced_deployment = self.deployments.delete


class Aborted(Exception):
    """Raised by the fake gRPC context instead of terminating the RPC"""

    @property
    def code(self):
        return self.args[0]

    @property
    def message(self):
        return self.args[1]


def build_pv(name, volume_handle=None, **attributes):
    """PersistentVolume provisioned by the plugin, or a hostPath one when no handle is given"""
    if volume_handle is None:
        spec = V1PersistentVolumeSpec(host_path=V1HostPathVolumeSource(path=f"/data/{name}"))
    else:
        spec = V1PersistentVolumeSpec(
            csi=V1CSIPersistentVolumeSource(
                driver="csi-rclone", volume_handle=volume_handle, volume_attributes=attributes or None
            )
        )
    return V1PersistentVolume(metadata=V1ObjectMeta(name=name), spec=spec)


# ----------------------------------------------------------------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------------------------------------------------------------


@pytest.fixture
def kube():
    """In-memory CoreV1/AppsV1 API pair"""
    return Bunch(core=FakeCoreV1Api(), apps=FakeAppsV1Api())


@pytest.fixture
def grpc_context():
    context = MagicMock()
    context.peer.return_value = "ipv4:127.0.0.1:5000"
    context.time_remaining.return_value = None

    def abort(code, message):
        raise Aborted(code, message)

    context.abort.side_effect = abort
    return context


@pytest.fixture
def volume_capabilities():
    """Factory for building VolumeCapabilities"""

    def __wrapped(
            mode: types.AccessModeType = types.AccessModeType.SINGLE_NODE_WRITER, block: bool = False
    ) -> List[types.VolumeCapability]:
        access_type = dict(block=types.VolumeCapability.BlockVolume()) if block else dict(mount=types.MountVolume())
        return [types.VolumeCapability(access_mode=types.AccessMode(mode=mode), **access_type)]

    return __wrapped


@pytest.fixture
def reconciler(kube):
    from rclone_csi.reconciler import MounterReconciler

    return MounterReconciler(kube, namespace="rclone", node_name="node-1", image="rclone/rclone:test")
