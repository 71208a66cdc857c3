"""
Keeps the per-volume mounter objects (a config Secret and an rclone Deployment) in line with the
requested rclone config. Objects are never updated in place: when the labels of a live object differ
from the desired fingerprint the object is deleted and created again.
"""
import os
from time import sleep
from threading import RLock

from kubernetes import client, config as kube_config
from kubernetes.client import ApiException, V1DeleteOptions

from easypy.bunch import Bunch
from easypy.caching import locking_cache
from easypy.tokens import NOOP, CREATE, RECREATE
from easypy.timing import Timer

from .logging import logger
from .exceptions import DeletionTimeout
from .manifests import build_config_secret, build_mounter_deployment

SECRET = "secret"
DEPLOYMENT = "deployment"


@locking_cache
def get_kube_api(kubeconfig=None):
    if kubeconfig:
        kube_config.load_kube_config(config_file=str(kubeconfig))
    else:
        try:
            kube_config.load_incluster_config()
        except kube_config.ConfigException:
            kube_config.load_kube_config()
    return Bunch(core=client.CoreV1Api(), apps=client.AppsV1Api())


# Entries are never evicted: a node holds one RLock per mounter name it has served since startup.
@locking_cache
def mounter_lock(name):
    """One lock per mounter name, guarding the read-compare-act sequence on its objects"""
    return RLock()


def plan_action(observed_labels, desired_labels):
    """
    Decide what to do with a mounter object given the labels of its live copy.
    ``observed_labels`` is None when the object does not exist.
    """
    if observed_labels is None:
        return CREATE
    if observed_labels != desired_labels:
        return RECREATE
    return NOOP


class MounterReconciler:

    KINDS = {
        SECRET: ("core", "namespaced_secret"),
        DEPLOYMENT: ("apps", "namespaced_deployment"),
    }

    DELETE_TIMEOUT = 60  # seconds
    DELETE_POLL_INTERVAL = 0.5  # seconds

    def __init__(self, kube, namespace, node_name, image):
        self.kube = kube
        self.namespace = namespace
        self.node_name = node_name
        self.image = image

    @classmethod
    def from_config(cls, conf):
        return cls(
            kube=get_kube_api(conf.kubeconfig),
            namespace=conf.namespace,
            node_name=conf.node_id,
            image=conf.rclone_image,
        )

    def _call(self, verb, kind, **kwargs):
        api_name, resource = self.KINDS[kind]
        method = getattr(self.kube[api_name], f"{verb}_{resource}")
        return method(namespace=self.namespace, **kwargs)

    def _read(self, kind, name):
        try:
            return self._call("read", kind, name=name)
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise

    def _delete(self, kind, name):
        # pods of the old ReplicaSet must be gone before another mounter can take over the host path
        options = dict(body=V1DeleteOptions(propagation_policy="Foreground")) if kind == DEPLOYMENT else {}
        try:
            self._call("delete", kind, name=name, **options)
        except ApiException as exc:
            if exc.status != 404:
                raise
            logger.info(f"{kind} {self.namespace}/{name} already absent")
        else:
            logger.info(f"{kind} {self.namespace}/{name} deleted")

    def _wait_deleted(self, kind, name):
        timer = Timer(expiration=self.DELETE_TIMEOUT)
        while self._read(kind, name) is not None:
            if timer.expired:
                raise DeletionTimeout(kind=kind, namespace=self.namespace, name=name, timeout=self.DELETE_TIMEOUT)
            sleep(self.DELETE_POLL_INTERVAL)

    def _reconcile(self, kind, name, labels, build):
        observed = self._read(kind, name)
        observed_labels = None if observed is None else (observed.metadata.labels or {})
        action = plan_action(observed_labels, labels)
        if action == NOOP:
            logger.info(f"{kind} {self.namespace}/{name} is up to date")
            return action
        if action == RECREATE:
            logger.info(f"{kind} {self.namespace}/{name} is stale ({observed_labels} != {labels}), recreating")
            self._delete(kind, name)
            self._wait_deleted(kind, name)
        self._call("create", kind, body=build())
        logger.info(f"{kind} {self.namespace}/{name} created")
        return action

    def ensure_mounted(self, volume, config_data, target_path, overrides=None):
        """
        Make sure a config Secret and a mounter Deployment exist for ``volume``, both labeled with the
        fingerprint of ``config_data``. Returns the action taken for each object.
        """
        name = volume.deployment_name
        labels = volume.labels(config_data)
        os.makedirs(target_path, mode=0o750, exist_ok=True)

        with mounter_lock(name):
            secret_action = self._reconcile(
                SECRET, name, labels,
                lambda: build_config_secret(volume, config_data, labels, self.namespace),
            )
            deployment_action = self._reconcile(
                DEPLOYMENT, name, labels,
                lambda: build_mounter_deployment(
                    volume, target_path, labels, self.namespace,
                    node_name=self.node_name, image=self.image, overrides=overrides,
                ),
            )
        return Bunch(secret=secret_action, deployment=deployment_action)

    def tear_down(self, volume):
        """Delete the mounter Deployment and then its config Secret; missing objects are fine"""
        name = volume.deployment_name
        with mounter_lock(name):
            self._delete(DEPLOYMENT, name)
            self._delete(SECRET, name)
