import grpc
import pytest
from kubernetes.client import ApiException
from easypy.tokens import CONTROLLER, NODE, CONTROLLER_AND_NODE

import rclone_csi.server
from rclone_csi.server import Instrumented, CsiIdentity, Config
from rclone_csi.exceptions import VolumeNotFound, MountTimeout
from rclone_csi.proto import csi_pb2
import rclone_csi.csi_types as types
from conftest import Aborted

CONFIG = "[s3]\ntype = s3\n"


def create_request(**kwargs):
    return csi_pb2.CreateVolumeRequest(**kwargs)


@pytest.fixture
def capability():
    return types.VolumeCapability(
        access_mode=types.AccessMode(mode=types.AccessModeType.SINGLE_NODE_WRITER), mount=types.MountVolume()
    )


class TestInstrumentedSuite:

    def test_params_and_secret_are_passed(self, grpc_context, capability):
        seen = {}

        def CreateVolume(self, rclone_conf, name, volume_capabilities, parameters=None):
            seen.update(rclone_conf=rclone_conf, name=name, parameters=dict(parameters))
            return types.CreateResp(volume=types.Volume(volume_id=name))

        request = create_request(
            name="pvc-1", volume_capabilities=[capability], parameters=dict(remote="s3"),
            secrets={"rclone.conf": CONFIG},
        )
        resp = Instrumented.logged(CreateVolume)(None, request, grpc_context)

        assert resp.volume.volume_id == "pvc-1"
        assert seen == dict(rclone_conf=CONFIG, name="pvc-1", parameters=dict(remote="s3"))
        grpc_context.abort.assert_not_called()

    def test_missing_fields(self, grpc_context):
        def CreateVolume(self, rclone_conf, name, volume_capabilities):
            raise AssertionError("must not be called")

        request = create_request(secrets={"rclone.conf": CONFIG})
        with pytest.raises(Aborted) as exc:
            Instrumented.logged(CreateVolume)(None, request, grpc_context)

        assert exc.value.code == grpc.StatusCode.INVALID_ARGUMENT
        assert exc.value.message == "Missing required fields: name, volume_capabilities"

    def test_missing_secret(self, grpc_context, capability):
        def CreateVolume(self, rclone_conf, name, volume_capabilities):
            raise AssertionError("must not be called")

        request = create_request(name="pvc-1", volume_capabilities=[capability])
        with pytest.raises(Aborted) as exc:
            Instrumented.logged(CreateVolume)(None, request, grpc_context)

        assert exc.value.code == grpc.StatusCode.INVALID_ARGUMENT
        assert "'rclone.conf' not found" in exc.value.message

    def test_optional_secret(self, grpc_context):
        seen = {}

        def ValidateVolumeCapabilities(self, volume_id, rclone_conf=None, secrets=None):
            seen.update(rclone_conf=rclone_conf, secrets=secrets)

        request = csi_pb2.ValidateVolumeCapabilitiesRequest(volume_id="pvc-1", secrets={"other": "x"})
        Instrumented.logged(ValidateVolumeCapabilities)(None, request, grpc_context)

        assert seen == dict(rclone_conf=None, secrets=None)

    @pytest.mark.parametrize("error, code, message", [
        (VolumeNotFound(volume_id="pvc-1"), grpc.StatusCode.NOT_FOUND, "Volume pvc-1 not found"),
        (ApiException(status=500, reason="Internal Server Error"), grpc.StatusCode.INTERNAL,
         "Kubernetes API request failed: <Internal Server Error(500)>"),
        (MountTimeout(path="/mnt", timeout=60), grpc.StatusCode.INTERNAL, "Timed out waiting for /mnt"),
        (ValueError("boom"), grpc.StatusCode.UNKNOWN, "[ControllerGetVolume]: boom"),
    ])
    def test_error_mapping(self, grpc_context, error, code, message):
        def ControllerGetVolume(self, volume_id):
            raise error

        request = csi_pb2.ControllerGetVolumeRequest(volume_id="pvc-1")
        with pytest.raises(Aborted) as exc:
            Instrumented.logged(ControllerGetVolume)(None, request, grpc_context)

        assert exc.value.code == code
        assert message in exc.value.message


class TestIdentitySuite:

    def test_plugin_info(self, grpc_context):
        resp = CsiIdentity().GetPluginInfo(csi_pb2.GetPluginInfoRequest(), grpc_context)
        assert resp.name == rclone_csi.server.CONF.plugin_name
        assert resp.vendor_version == rclone_csi.server.CONF.plugin_version

    def test_capabilities(self, grpc_context):
        identity = CsiIdentity()
        identity.capabilities.append(types.ServiceType.CONTROLLER_SERVICE)

        resp = identity.GetPluginCapabilities(csi_pb2.GetPluginCapabilitiesRequest(), grpc_context)

        assert [cap.service.type for cap in resp.capabilities] == [types.ServiceType.CONTROLLER_SERVICE]

    def test_probe(self, grpc_context):
        resp = CsiIdentity().Probe(csi_pb2.ProbeRequest(), grpc_context)
        assert resp.ready.value


class TestConfigSuite:

    def test_defaults(self):
        conf = Config(env={"HOME": "/root"})
        assert conf.plugin_name == "csi-rclone"
        assert conf.namespace == "default"
        assert conf.mount_timeout == 60
        assert conf.mount_poll_interval == 0.1
        assert conf.unmount_attempts == 10
        assert conf.kubeconfig is None
        assert conf.mode == CONTROLLER_AND_NODE

    @pytest.mark.parametrize("mode, expected", [("node", NODE), ("controller", CONTROLLER)])
    def test_mode(self, mode, expected):
        assert Config(env={"X_CSI_MODE": mode}).mode == expected

    def test_invalid_mode(self):
        with pytest.raises(AssertionError):
            Config(env={"X_CSI_MODE": "bogus"}).mode

    def test_overrides(self):
        conf = Config(env={
            "X_CSI_PLUGIN_NAME": "rclone.csi.example.com",
            "POD_NAMESPACE": "csi-rclone",
            "X_CSI_MOUNT_TIMEOUT": "5.5",
            "X_CSI_UNMOUNT_ATTEMPTS": "3",
            "CSI_ENDPOINT": "tcp://0.0.0.0:50051",
        })
        assert conf.plugin_name == "rclone.csi.example.com"
        assert conf.namespace == "csi-rclone"
        assert conf.mount_timeout == 5.5
        assert conf.unmount_attempts == 3
        assert conf.endpoint == "0.0.0.0:50051"

    @pytest.mark.parametrize("endpoint, expected", [
        ("tcp://pod:1234", "pod:1234"),
        ("tcp://csi-rclone.kube-system.svc:50051", "csi-rclone.kube-system.svc:50051"),
        ("unix:///var/run/csi/csi.sock", "unix:///var/run/csi/csi.sock"),
    ])
    def test_endpoint(self, endpoint, expected):
        assert Config(env={"CSI_ENDPOINT": endpoint}).endpoint == expected
