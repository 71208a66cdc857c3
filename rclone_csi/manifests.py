"""Construction of the Kubernetes objects that serve an rclone mount on a node."""

from kubernetes.client import (
    V1Capabilities,
    V1Container,
    V1ContainerPort,
    V1Deployment,
    V1DeploymentSpec,
    V1DeploymentStrategy,
    V1ExecAction,
    V1HostPathVolumeSource,
    V1HTTPGetAction,
    V1KeyToPath,
    V1LabelSelector,
    V1Lifecycle,
    V1LifecycleHandler,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Probe,
    V1Secret,
    V1SecretVolumeSource,
    V1SecurityContext,
    V1Volume,
    V1VolumeMount,
)

from .rclone import RC_PORT, CONFIG_KEY, compose_mount_args

CONTAINER_NAME = "rclone-mounter"
CONFIG_DIR = "/root/.config/rclone/"
PRIORITY_CLASS = "system-cluster-critical"


def build_metadata(volume, labels, namespace) -> V1ObjectMeta:
    return V1ObjectMeta(name=volume.deployment_name, namespace=namespace, labels=dict(labels))


def build_config_secret(volume, config_data, labels, namespace) -> V1Secret:
    """Secret holding the rclone config, mounted into the mounter container"""
    return V1Secret(
        metadata=build_metadata(volume, labels, namespace),
        string_data={CONFIG_KEY: config_data},
        type="Opaque",
    )


def _probe(**handler) -> V1Probe:
    return V1Probe(
        initial_delay_seconds=1,
        timeout_seconds=5,
        period_seconds=10,
        success_threshold=1,
        failure_threshold=10,
        **handler,
    )


def build_mounter_deployment(volume, target_path, labels, namespace, node_name, image, overrides=None) -> V1Deployment:
    """
    Single-replica Deployment running ``rclone mount`` into ``target_path`` on ``node_name``.
    The host path is shared with bidirectional propagation so the FUSE mount made inside the
    container becomes visible on the host. Recreate strategy keeps at most one mounter per path.
    """
    target_path = str(target_path)
    container = V1Container(
        name=CONTAINER_NAME,
        image=image,
        command=["rclone"],
        args=compose_mount_args(volume, target_path, overrides),
        ports=[V1ContainerPort(name="api", container_port=RC_PORT, protocol="TCP")],
        lifecycle=V1Lifecycle(
            pre_stop=V1LifecycleHandler(
                _exec=V1ExecAction(command=["sh", "-c", f"umount {target_path}"])
            ),
        ),
        volume_mounts=[
            V1VolumeMount(name="config", mount_path=CONFIG_DIR),
            V1VolumeMount(name="mount", mount_path=target_path, mount_propagation="Bidirectional"),
        ],
        security_context=V1SecurityContext(
            privileged=True,
            capabilities=V1Capabilities(add=["SYS_ADMIN"]),
        ),
        liveness_probe=_probe(_exec=V1ExecAction(command=["sh", "-c", f"ls -lah {target_path}"])),
        readiness_probe=_probe(http_get=V1HTTPGetAction(path="/metrics", port=RC_PORT)),
    )

    volumes = [
        V1Volume(
            name="mount",
            host_path=V1HostPathVolumeSource(path=target_path, type="DirectoryOrCreate"),
        ),
        V1Volume(
            name="config",
            secret=V1SecretVolumeSource(
                secret_name=volume.deployment_name,
                items=[V1KeyToPath(key=CONFIG_KEY, path=CONFIG_KEY, mode=0o600)],
                optional=False,
            ),
        ),
    ]

    return V1Deployment(
        metadata=build_metadata(volume, labels, namespace),
        spec=V1DeploymentSpec(
            replicas=1,
            selector=V1LabelSelector(match_labels=dict(labels)),
            strategy=V1DeploymentStrategy(type="Recreate"),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=dict(labels)),
                spec=V1PodSpec(
                    node_name=node_name,
                    restart_policy="Always",
                    priority_class_name=PRIORITY_CLASS,
                    termination_grace_period_seconds=10,
                    containers=[container],
                    volumes=volumes,
                ),
            ),
        ),
    )
