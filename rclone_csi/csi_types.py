from google.protobuf import wrappers_pb2 as wrappers

from .proto import csi_pb2


class EnumWrapper(object):
    def __init__(self, enum):
        self._enum = enum

    def __getattr__(self, name):
        try:
            return getattr(self._enum, name)
        except AttributeError:
            return self._enum.Value(name)


Bool = wrappers.BoolValue

InfoResp = csi_pb2.GetPluginInfoResponse
NodeInfoResp = csi_pb2.NodeGetInfoResponse

Capability = csi_pb2.PluginCapability
Service = Capability.Service
ServiceType = EnumWrapper(Service.Type)
CtrlCapability = csi_pb2.ControllerServiceCapability
CtrlCapabilityType = EnumWrapper(CtrlCapability.RPC.Type)
CtrlCapabilityResp = csi_pb2.ControllerGetCapabilitiesResponse

NodeCapability = csi_pb2.NodeServiceCapability
NodeCapabilityType = EnumWrapper(NodeCapability.RPC.Type)
NodeCapabilityResp = csi_pb2.NodeGetCapabilitiesResponse

ValidateResp = csi_pb2.ValidateVolumeCapabilitiesResponse
CtrlGetVolumeResp = csi_pb2.ControllerGetVolumeResponse
CapabilitiesResp = csi_pb2.GetPluginCapabilitiesResponse

VolumeCapability = csi_pb2.VolumeCapability
MountVolume = VolumeCapability.MountVolume
AccessMode = VolumeCapability.AccessMode
AccessModeType = EnumWrapper(AccessMode.Mode)

NodePublishResp = csi_pb2.NodePublishVolumeResponse
NodeUnpublishResp = csi_pb2.NodeUnpublishVolumeResponse
ProbeRespOK = csi_pb2.ProbeResponse(ready=Bool(value=True))
CreateResp = csi_pb2.CreateVolumeResponse
DeleteResp = csi_pb2.DeleteVolumeResponse
Volume = csi_pb2.Volume
