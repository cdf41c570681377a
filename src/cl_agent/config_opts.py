"""oslo.config option schema for the control-plane agent.

The YAML agent file (see :mod:`cl_agent.config`) is applied on top of these
options with ``set_override``, so every value goes through the oslo type
checks below before reaching the reconciler.
"""

from oslo_config import cfg

from cl_controlplane.reconciler import ReconcilerSettings

GROUP = "controlplane"

controlplane_group = cfg.OptGroup(
    GROUP,
    title="Control plane options",
    help="Import reconciliation and connection policy settings.",
)

controlplane_opts = [
    cfg.StrOpt('system_namespace',
               default='clusterlink-system',
               help='Namespace holding dataplane registrations and the '
                    'system services of imports created in other namespaces.'),
    cfg.IntOpt('workers',
               default=2,
               min=1,
               help='Number of concurrent import reconciliation workers.'),
    cfg.PortOpt('port_range_min',
                default=20000,
                help='Lowest target port handed out to imports without an '
                     'explicit target port.'),
    cfg.PortOpt('port_range_max',
                default=30000,
                help='Upper bound (exclusive) of derived target ports.'),
    cfg.IntOpt('max_retries',
               default=5,
               min=0,
               help='Retried passes after transient store errors before an '
                    'import is marked invalid.'),
    cfg.FloatOpt('backoff_base',
                 default=0.05,
                 min=0,
                 help='Initial retry backoff in seconds.'),
    cfg.FloatOpt('backoff_max',
                 default=2.0,
                 min=0,
                 help='Maximum retry backoff in seconds.'),
    cfg.StrOpt('default_acl_action',
               default='deny',
               choices=['allow', 'deny'],
               help='Decision applied when no ACL rule matches a connection.'),
]


def register_opts(conf=None):
    """Register the control-plane options on ``conf`` and return it."""

    conf = conf if conf is not None else cfg.CONF
    conf.register_group(controlplane_group)
    conf.register_opts(controlplane_opts, group=controlplane_group)
    return conf


def reconciler_settings(conf):
    """Build :class:`ReconcilerSettings` from registered options."""

    group = getattr(conf, GROUP)
    return ReconcilerSettings(
        system_namespace=group.system_namespace,
        max_retries=group.max_retries,
        backoff_base=group.backoff_base,
        backoff_max=group.backoff_max,
    )
