# Copyright 2015 gRPC authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""CSI plugin serving rclone remotes through per-volume mounter Deployments."""

import os
from concurrent import futures
from functools import wraps
from pprint import pformat
import inspect

from plumbum import local
import grpc
from kubernetes.client import ApiException

from easypy.tokens import CONTROLLER_AND_NODE, CONTROLLER, NODE
from easypy.misc import kwargs_resilient
from easypy.caching import cached_property
from easypy.exceptions import TException
from easypy.collections import separate

from .logging import logger, init_logging
from .proto import csi_pb2_grpc as csi_grpc
from . import csi_types as types
from .exceptions import (
    Abort,
    MissingParameter,
    MissingSecret,
    VolumeNotFound,
)
from .configuration import Config
from .volume import RcloneVolume
from .rclone import CONFIG_KEY, extract_mount_flags, create_volume_dir, delete_volume_dir
from .reconciler import MounterReconciler, get_kube_api
from .locator import VolumeLocator
from .mounts import is_mountpoint, is_healthy, unmount, wait_until_mounted


CONF = None

################################################################
#
# Helpers
#
################################################################


INVALID_ARGUMENT = grpc.StatusCode.INVALID_ARGUMENT
NOT_FOUND = grpc.StatusCode.NOT_FOUND
INTERNAL = grpc.StatusCode.INTERNAL
UNKNOWN = grpc.StatusCode.UNKNOWN
UNIMPLEMENTED = grpc.StatusCode.UNIMPLEMENTED

# Each volume is served by a single mounter pinned to one node
SUPPORTED_ACCESS = [
    types.AccessModeType.SINGLE_NODE_WRITER,
    types.AccessModeType.SINGLE_NODE_READER_ONLY,
    types.AccessModeType.SINGLE_NODE_SINGLE_WRITER,
    types.AccessModeType.SINGLE_NODE_MULTI_WRITER,
]


def _validate_capabilities(capabilities):
    for capability in capabilities:
        if capability.access_mode.mode not in SUPPORTED_ACCESS:
            raise Abort(
                INVALID_ARGUMENT,
                f"Unsupported access mode: {capability.access_mode.mode} (use {SUPPORTED_ACCESS})",
            )
        if capability.HasField("block"):
            raise Abort(INVALID_ARGUMENT, "Block access type is not supported")


def _require(mapping, key, section, allow_empty=False):
    value = mapping.get(key)
    if value is None or (not value and not allow_empty):
        raise MissingParameter(param=key, section=section)
    return value


def _not_implemented(method):
    def func(self):
        raise Abort(UNIMPLEMENTED, f"method {method} not implemented")

    func.__name__ = func.__qualname__ = method
    return func


class Instrumented:

    SILENCED = ["Probe", "NodeGetCapabilities"]

    @classmethod
    def logged(cls, func):

        method = func.__name__
        log = logger.debug if (method in cls.SILENCED) else logger.info

        parameters = inspect.signature(func).parameters
        required_params, non_required_params = map(
            set, separate(parameters, key=lambda k: parameters[k].default is inspect._empty)
        )
        required_params.discard("self")

        func = kwargs_resilient(func)

        @wraps(func)
        def wrapper(self, request, context):
            peer = context.peer()
            params = {fld.name: value for fld, value in request.ListFields()}
            # secrets are not logged and not the part of function signature.
            secrets = params.pop("secrets", {})
            missing_params = required_params - {"request", "context", "rclone_conf"} - set(params)

            log(f"{peer} >>> {method}:")

            if params:
                for line in pformat(params).splitlines():
                    log(f"({method})    {line}")

            try:
                if missing_params:
                    msg = f'Missing required fields: {", ".join(sorted(missing_params))}'
                    logger.error(f"{peer} <<< {method}: {msg}")
                    raise Abort(INVALID_ARGUMENT, msg)

                if "rclone_conf" in required_params:
                    # rclone config material travels in the secret referenced by the StorageClass
                    if CONFIG_KEY not in secrets:
                        raise MissingSecret(key=CONFIG_KEY)
                    params["rclone_conf"] = secrets[CONFIG_KEY]
                elif "rclone_conf" in non_required_params:
                    params["rclone_conf"] = secrets.get(CONFIG_KEY)

                ret = func(self, request=request, context=context, **params)
            except Abort as exc:
                logger.info(
                    f'{peer} <<< {method} ABORTED with {exc.code} ("{exc.message}")'
                )
                logger.debug("Traceback", exc_info=True)
                context.abort(exc.code, exc.message)
            except ApiException as exc:
                logger.exception(f"Exception during {method}\n{exc.body}")
                context.abort(
                    INTERNAL,
                    f"[{method}]. Kubernetes API request failed: <{exc.reason}({exc.status})>"
                )
            except TException as exc:
                # Any exception inherited from TException
                logger.exception(f"Exception during {method}")
                context.abort(INTERNAL, f"[{method}]. {exc.render(color=False)}")
            except Exception as exc:
                logger.exception(f"Exception during {method}")
                text = str(exc)
                context.abort(UNKNOWN, f"[{method}]: {text}")
            if ret:
                log(f"{peer} <<< {method}:")
                for line in pformat(ret).splitlines():
                    log(f"    {line}")
            log(f"{peer} --- {method}: Done")
            return ret

        return wrapper

    @classmethod
    def __init_subclass__(cls):
        for name, _ in inspect.getmembers(cls.__base__, inspect.isfunction):
            if name.startswith("_"):
                continue
            func = getattr(cls, name)
            setattr(cls, name, cls.logged(func))
        super().__init_subclass__()


################################################################
#
# Identity
#
################################################################


class CsiIdentity(csi_grpc.IdentityServicer, Instrumented):
    def __init__(self):
        self.capabilities = []
        self.controller = None
        self.node = None

    def GetPluginInfo(self, request, context):
        return types.InfoResp(
            name=CONF.plugin_name,
            vendor_version=CONF.plugin_version,
        )

    def GetPluginCapabilities(self, request, context):
        return types.CapabilitiesResp(
            capabilities=[
                types.Capability(service=types.Service(type=cap))
                for cap in self.capabilities
            ]
        )

    def Probe(self, request, context):
        return types.ProbeRespOK


################################################################
#
# Controller
#
################################################################


class CsiController(csi_grpc.ControllerServicer, Instrumented):

    CAPABILITIES = [
        types.CtrlCapabilityType.CREATE_DELETE_VOLUME,
        types.CtrlCapabilityType.GET_VOLUME,
    ]

    @cached_property
    def locator(self):
        return VolumeLocator(get_kube_api(CONF.kubeconfig))

    def ControllerGetCapabilities(self):
        return types.CtrlCapabilityResp(
            capabilities=[
                types.CtrlCapability(rpc=types.CtrlCapability.RPC(type=rpc))
                for rpc in self.CAPABILITIES
            ]
        )

    def CreateVolume(
        self,
        rclone_conf,
        name,
        volume_capabilities,
        capacity_range=None,
        parameters=None,
    ):
        _validate_capabilities(volume_capabilities)
        parameters = parameters or dict()
        remote = _require(parameters, "remote", section="parameters")
        remote_path = _require(parameters, "path", section="parameters", allow_empty=True)

        path = create_volume_dir(name, remote, remote_path, rclone_conf)
        logger.info(f"Created {remote}:{path} for volume {name}")

        return types.CreateResp(
            volume=types.Volume(
                # the provisioner-generated name is unique, so it doubles as an idempotent volume handle
                volume_id=name,
                capacity_bytes=capacity_range.required_bytes if capacity_range else 0,
                volume_context=dict(remote=remote, path=path),
            )
        )

    def DeleteVolume(self, rclone_conf, volume_id):
        try:
            volume = self.locator.resolve(volume_id)
        except VolumeNotFound:
            logger.info(f"{volume_id} is unknown - assuming it is already deleted")
            return types.DeleteResp()

        delete_volume_dir(volume, rclone_conf)
        logger.info(f"Removed volume: {volume_id} ({volume.remote}:{volume.remote_path})")
        return types.DeleteResp()

    def ValidateVolumeCapabilities(
        self,
        volume_id,
        volume_capabilities,
        volume_context=None,
        parameters=None,
    ):
        self.locator.resolve(volume_id)
        try:
            _validate_capabilities(volume_capabilities)
        except Abort as exc:
            return types.ValidateResp(message=exc.message)

        confirmed = types.ValidateResp.Confirmed(
            volume_context=volume_context,
            volume_capabilities=volume_capabilities,
            parameters=parameters,
        )

        return types.ValidateResp(confirmed=confirmed)

    def ControllerGetVolume(self, volume_id):
        volume = self.locator.resolve(volume_id)
        return types.CtrlGetVolumeResp(
            volume=types.Volume(
                volume_id=volume.id,
                volume_context=dict(remote=volume.remote, path=volume.remote_path),
            )
        )

    ControllerPublishVolume = _not_implemented("ControllerPublishVolume")
    ControllerUnpublishVolume = _not_implemented("ControllerUnpublishVolume")
    ControllerExpandVolume = _not_implemented("ControllerExpandVolume")


################################################################
#
# Node
#
################################################################


class CsiNode(csi_grpc.NodeServicer, Instrumented):

    CAPABILITIES = []

    @cached_property
    def mounter(self):
        return MounterReconciler.from_config(CONF)

    def NodeGetCapabilities(self):
        return types.NodeCapabilityResp(
            capabilities=[
                types.NodeCapability(rpc=types.NodeCapability.RPC(type=rpc))
                for rpc in self.CAPABILITIES
            ]
        )

    def NodeGetInfo(self):
        return types.NodeInfoResp(node_id=CONF.node_id)

    def _mount_timeout(self, context):
        remaining = context.time_remaining() if context is not None else None
        if remaining is None:
            return CONF.mount_timeout
        return min(CONF.mount_timeout, remaining)

    def NodePublishVolume(
        self,
        rclone_conf,
        volume_id,
        target_path,
        volume_capability,
        context=None,
        readonly=False,
        volume_context=None,
    ):
        _validate_capabilities([volume_capability])
        volume_context = volume_context or dict()
        remote = _require(volume_context, "remote", section="volume attributes")
        remote_path = _require(volume_context, "path", section="volume attributes", allow_empty=True)
        target_path = local.path(target_path)

        if is_mountpoint(target_path):
            if is_healthy(target_path):
                logger.info(f"{volume_id} is already mounted to {target_path}")
                return types.NodePublishResp()
            logger.warning(f"{target_path} is a stale mount, unmounting before mounting again")
            if not unmount(target_path, CONF.unmount_attempts):
                raise Abort(INTERNAL, f"Unable to unmount stale mount {target_path}")

        overrides = extract_mount_flags(volume_context)
        if readonly:
            overrides.setdefault("read-only", "")

        volume = RcloneVolume(id=volume_id, remote=remote, remote_path=remote_path)
        actions = self.mounter.ensure_mounted(volume, rclone_conf, target_path, overrides)
        logger.info(f"Mounter {volume.deployment_name}: {actions}")

        wait_until_mounted(target_path, CONF.mount_poll_interval, self._mount_timeout(context))
        return types.NodePublishResp()

    def NodeUnpublishVolume(self, volume_id, target_path):
        # the mounter name derives from the volume handle alone
        self.mounter.tear_down(RcloneVolume(id=volume_id))
        target_path = local.path(target_path)

        if not (is_mountpoint(target_path) or target_path.exists()):
            logger.info(f"{target_path} does not exist - no need to remove")
            return types.NodeUnpublishResp()

        if not unmount(target_path, CONF.unmount_attempts):
            raise Abort(
                INTERNAL,
                f"Stuck in unmount loop of {target_path} too many times ({CONF.unmount_attempts})",
            )
        logger.info(f"Deleting {target_path}")
        os.rmdir(target_path)  # don't use plumbum's .delete to avoid the dangerous rmtree
        logger.info(f"{target_path} removed successfully")
        return types.NodeUnpublishResp()

    NodeStageVolume = _not_implemented("NodeStageVolume")
    NodeUnstageVolume = _not_implemented("NodeUnstageVolume")
    NodeExpandVolume = _not_implemented("NodeExpandVolume")


################################################################
#
# Entrypoint
#
################################################################


def serve():
    global CONF
    CONF = Config()
    init_logging(level=CONF.log_level)
    logger.info("%s: %s (%s)", CONF.plugin_name, CONF.plugin_version, CONF.git_commit)

    server = grpc.server(futures.ThreadPoolExecutor(max_workers=CONF.worker_threads))

    identity = CsiIdentity()
    csi_grpc.add_IdentityServicer_to_server(identity, server)

    if CONF.mode in {CONTROLLER, CONTROLLER_AND_NODE}:
        identity.controller = CsiController()
        identity.capabilities.append(types.ServiceType.CONTROLLER_SERVICE)
        csi_grpc.add_ControllerServicer_to_server(identity.controller, server)

    if CONF.mode in {NODE, CONTROLLER_AND_NODE}:
        identity.node = CsiNode()
        csi_grpc.add_NodeServicer_to_server(identity.node, server)

    server.add_insecure_port(CONF.endpoint)
    server.start()

    logger.info(f"Server started as '{CONF.mode}', listening on {CONF.endpoint}, spawned threads {CONF.worker_threads}")
    server.wait_for_termination()
