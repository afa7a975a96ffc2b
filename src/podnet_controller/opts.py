"""oslo.config options for hosting the controller in an oslo service.

Services that already configure themselves through oslo.config can register
these options (group ``[podnet]``) and build the controller configuration
from them instead of shipping a separate YAML file.
"""

from pathlib import Path

from oslo_config import cfg

from podnet.attributes import DEFAULT_DOMAIN
from podnet.model import GroupVersionKind

from .config import ControllerConfig, KindScope, PodNetConfig, WatcherConfig

GROUP = "podnet"

controller_opts = [
    cfg.StrOpt('attribute_domain',
               default=DEFAULT_DOMAIN,
               help='Domain qualifying the standardized device attributes '
                    '(podNetwork, networkClass, podNetworkNamespace).'),
    cfg.ListOpt('drivers',
                default=[],
                help='DRA driver names whose devices are network attachments. '
                     'Empty means every driver.'),
    cfg.IntOpt('workers',
               default=2,
               min=1,
               help='Worker threads per reconciliation queue.'),
    cfg.IntOpt('conflict_retries',
               default=5,
               min=0,
               help='Immediate retries after a stale-write conflict.'),
    cfg.FloatOpt('resync_interval',
                 default=300.0,
                 min=1.0,
                 help='Seconds between full re-enqueues of every object.'),
    cfg.FloatOpt('backoff_base',
                 default=0.5,
                 min=0.01,
                 help='Initial retry delay in seconds for failed reconciliations.'),
    cfg.FloatOpt('backoff_max',
                 default=60.0,
                 min=0.01,
                 help='Upper bound in seconds for the retry delay.'),
    cfg.IntOpt('failure_threshold',
               default=10,
               min=1,
               help='Consecutive failures after which a key is reported as stuck.'),
    cfg.ListOpt('namespaced_kinds',
                default=[],
                help='Namespaced network kinds as group/version/Kind. '
                     'Example: ["k8s.ovn.org/v1/UserDefinedNetwork"]'),
    cfg.ListOpt('cluster_kinds',
                default=[],
                help='Cluster-scoped network kinds as group/version/Kind.'),
    cfg.StrOpt('state_file',
               default=None,
               help='Recorded cluster state to replay. When unset the '
                    'controller watches the Kubernetes API.'),
]


def register_opts(conf=cfg.CONF):
    """Register the controller options under the ``[podnet]`` group."""
    conf.register_opts(controller_opts, group=GROUP)


def parse_kind(entry):
    """Parse ``group/version/Kind`` (or ``version/Kind`` for core kinds)."""
    parts = entry.split('/')
    if len(parts) == 3:
        group, version, kind = parts
    elif len(parts) == 2:
        group = ''
        version, kind = parts
    else:
        raise ValueError(f"invalid kind reference '{entry}'")
    if not version or not kind:
        raise ValueError(f"invalid kind reference '{entry}'")
    return GroupVersionKind(group=group, version=version, kind=kind)


def config_from_conf(conf=cfg.CONF):
    """Build a :class:`PodNetConfig` from registered oslo.config options."""
    group = conf[GROUP]
    controller = ControllerConfig(
        attribute_domain=group.attribute_domain,
        drivers=tuple(group.drivers),
        workers=group.workers,
        conflict_retries=group.conflict_retries,
        resync_interval=group.resync_interval,
        backoff_base=group.backoff_base,
        backoff_max=group.backoff_max,
        failure_threshold=group.failure_threshold,
    )
    if controller.backoff_max < controller.backoff_base:
        raise ValueError("'backoff_max' must not be lower than 'backoff_base'")
    kinds = [KindScope(parse_kind(k), True) for k in group.namespaced_kinds]
    kinds.extend(KindScope(parse_kind(k), False) for k in group.cluster_kinds)
    if group.state_file:
        watchers = [WatcherConfig(type='file', path=Path(group.state_file))]
    else:
        watchers = [WatcherConfig(type='kubernetes')]
    return PodNetConfig(controller=controller, watchers=watchers, kinds=kinds)
