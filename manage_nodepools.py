#!/usr/bin/env python3

"""
NodePool Schedule
-----------------
Suspend and resume Karpenter node pools on an EKS cluster outside working hours.

Shutdown sets the CPU limit of every configured NodePool to "0", deletes the
NodeClaims Karpenter created for it and terminates any EC2 instance still
tagged with the pool name. Startup restores the CPU limit so Karpenter can
provision again.

Usage:
    python manage_nodepools.py --action <shutdown|startup> --cluster-name <name> --nodepools <a,b>

As a Lambda function the handler reads its configuration from the environment
and expects an event of the form {"Action": "shutdown"}.

Features:
    - Several node pools per run, processed sequentially
    - Dry run mode for safe testing
    - Short-lived EKS token from the ambient AWS identity
    - Tag-based EC2 sweep as a backstop for slow scale-down
"""

import argparse
import base64
import copy
import logging
import os
import sys
import tempfile
from typing import Any, Dict, List, Mapping, Optional
from dataclasses import dataclass, field
from enum import Enum
from logging.handlers import RotatingFileHandler

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from botocore.signers import RequestSigner
from kubernetes import client as k8s_client
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

KARPENTER_GROUP = "karpenter.sh"
KARPENTER_VERSION = "v1"
NODEPOOL_PLURAL = "nodepools"
NODECLAIM_PLURAL = "nodeclaims"
NODEPOOL_LABEL = "karpenter.sh/nodepool"

DEFAULT_CPU_LIMIT = "1000"
SHUTDOWN_CPU_LIMIT = "0"
DEFAULT_REGION = "ap-southeast-2"

TOKEN_PREFIX = "k8s-aws-v1."
TOKEN_EXPIRY_SECONDS = 60
CLUSTER_ID_HEADER = "x-k8s-aws-id"

SWEEPABLE_STATES = ["pending", "running", "stopping", "stopped"]

# Configure logging
logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

log_dir = os.path.join(tempfile.gettempdir(), "nodepool_schedule")
os.makedirs(log_dir, exist_ok=True)
log_file = os.path.join(log_dir, "nodepool_schedule.log")


def _build_log_handlers(environ: Mapping[str, str]) -> List[logging.Handler]:
    """Create the file handler, plus a console handler outside Lambda.

    The Lambda runtime already prints propagated records through its root
    handler, so a console handler there would duplicate every line.
    """
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5
    )
    file_handler.setFormatter(formatter)
    handlers: List[logging.Handler] = [file_handler]

    if not environ.get('AWS_LAMBDA_FUNCTION_NAME'):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)
    return handlers


if not logger.handlers:
    for log_handler in _build_log_handlers(os.environ):
        logger.addHandler(log_handler)

logger.debug("Log file: %s", log_file)


class NodePoolScheduleError(Exception):
    """Base class for every failure raised by a schedule run."""


class ConfigurationError(NodePoolScheduleError):
    """Required configuration is missing or malformed."""


class ValidationError(NodePoolScheduleError):
    """Invalid input passed to an operation."""


class CredentialError(NodePoolScheduleError):
    """The cluster credential or connection details could not be resolved."""


class NotFoundError(NodePoolScheduleError):
    """A named resource does not exist."""


class ConflictError(NodePoolScheduleError):
    """The resource changed between read and write."""


class ProviderError(NodePoolScheduleError):
    """An AWS or Kubernetes API call failed."""


class Action(Enum):
    """Scheduled actions."""
    SHUTDOWN = 'shutdown'
    STARTUP = 'startup'

    @classmethod
    def from_event(cls, event: Optional[Mapping[str, Any]]) -> 'Action':
        """Decode the action carried by an invocation event.

        Args:
            event: Invocation payload, e.g. {"Action": "shutdown"}

        Returns:
            Action: The decoded action

        Raises:
            ValidationError: If the action is missing or not recognized
        """
        raw = (event or {}).get('Action')
        if not isinstance(raw, str) or not raw.strip():
            raise ValidationError("Event has no 'Action' field")
        try:
            return cls(raw.strip().lower())
        except ValueError:
            choices = ', '.join(a.value for a in cls)
            raise ValidationError(f"Unknown action '{raw}' (expected one of: {choices})") from None


def parse_nodepool_names(value: Optional[str]) -> List[str]:
    """Split a comma separated pool list, trimming blanks and skipping empty entries."""
    if not value:
        return []
    return [name.strip() for name in value.split(',') if name.strip()]


def _parse_bool(value: Optional[str]) -> bool:
    return (value or '').strip().lower() in ('1', 'true', 'yes', 'on')


def _normalize_endpoint(value: Optional[str]) -> Optional[str]:
    if not value or not value.strip():
        return None
    value = value.strip()
    if '://' not in value:
        value = f"https://{value}"
    return value


@dataclass
class ScheduleConfig:
    """Resolved configuration for one run.

    Attributes:
        cluster_name: Name of the EKS cluster
        nodepool_names: Karpenter NodePools to reconcile, in order
        api_endpoint: Kubernetes API URL, None to use the cluster's own endpoint
        cpu_limit: Startup CPU limit override, None to use the default
        region: AWS region
        shutdown_tag: Extra tag key; instances tagged "<key>=true" are swept too
        dry_run: If True, only show what would be changed
        log_level: Logging level name
    """
    cluster_name: str
    nodepool_names: List[str]
    api_endpoint: Optional[str] = None
    cpu_limit: Optional[str] = None
    region: str = DEFAULT_REGION
    shutdown_tag: Optional[str] = None
    dry_run: bool = False
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ScheduleConfig':
        """Build the configuration from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            ScheduleConfig: The validated configuration

        Raises:
            ConfigurationError: If the cluster name or pool list is missing
        """
        env = os.environ if environ is None else environ
        config = cls(
            cluster_name=(env.get('KUBERNETES_CLUSTER_NAME') or '').strip(),
            nodepool_names=parse_nodepool_names(env.get('KARPENTER_NODEPOOL_NAME')),
            api_endpoint=_normalize_endpoint(env.get('KUBERNETES_SERVICE_HOST')),
            cpu_limit=(env.get('KARPENTER_NODEPOOL_LIMITS_CPU') or '').strip() or None,
            region=(env.get('AWS_REGION') or '').strip() or DEFAULT_REGION,
            shutdown_tag=(env.get('SHUTDOWN_TAG') or '').strip() or None,
            dry_run=_parse_bool(env.get('DRY_RUN')),
            log_level=(env.get('LOG_LEVEL') or 'INFO').strip().upper(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate required values.

        Raises:
            ConfigurationError: If any required value is missing
        """
        if not self.cluster_name:
            raise ConfigurationError("KUBERNETES_CLUSTER_NAME environment variable not set")
        if not self.nodepool_names:
            raise ConfigurationError("KARPENTER_NODEPOOL_NAME environment variable not set")


@dataclass
class NodePool:
    """Typed view of a Karpenter NodePool object.

    The full object is kept so the update sends back everything that was read,
    including metadata.resourceVersion.
    """
    name: str
    resource_version: Optional[str]
    cpu_limit: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> 'NodePool':
        metadata = obj.get('metadata') or {}
        limits = (obj.get('spec') or {}).get('limits') or {}
        cpu = limits.get('cpu')
        return cls(
            name=metadata.get('name', ''),
            resource_version=metadata.get('resourceVersion'),
            cpu_limit=None if cpu is None else str(cpu),
            raw=obj,
        )

    def to_object(self) -> Dict[str, Any]:
        obj = copy.deepcopy(self.raw)
        metadata = obj.setdefault('metadata', {})
        metadata['name'] = self.name
        if self.resource_version is not None:
            metadata['resourceVersion'] = self.resource_version
        spec = obj.setdefault('spec', {})
        limits = spec.get('limits')
        if limits is None:
            limits = spec['limits'] = {}
        if self.cpu_limit is not None:
            limits['cpu'] = self.cpu_limit
        return obj


@dataclass
class NodeClaim:
    """Typed view of a Karpenter NodeClaim object."""
    name: str
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def nodepool(self) -> Optional[str]:
        return self.labels.get(NODEPOOL_LABEL)

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> 'NodeClaim':
        metadata = obj.get('metadata') or {}
        return cls(name=metadata.get('name', ''), labels=dict(metadata.get('labels') or {}))


@dataclass
class RunSummary:
    """Outcome of one schedule run."""
    action: Action
    dry_run: bool = False
    reconciled: List[str] = field(default_factory=list)
    deleted_claims: List[str] = field(default_factory=list)
    terminated_instances: List[str] = field(default_factory=list)


def _api_error(exc: Exception, operation: str, kind: str, name: str) -> NodePoolScheduleError:
    """Map a Kubernetes API or transport failure to the matching schedule error."""
    if not isinstance(exc, ApiException):
        return ProviderError(f"failed to {operation} {kind} {name}: {str(exc)}")
    detail = f"{operation} {kind} {name}: {exc.status} {exc.reason}"
    if exc.status == 404:
        return NotFoundError(f"{kind} {name} not found ({operation})")
    if exc.status == 409:
        return ConflictError(f"{kind} {name} was modified concurrently ({operation})")
    return ProviderError(f"failed to {detail}")


class KarpenterClient:
    """Karpenter NodePool and NodeClaim access through the custom objects API.

    Exposes get_nodepool, update_nodepool, list_nodeclaims and delete_nodeclaim.
    Anything with those four methods can be passed to the reconcile and purge
    steps in its place.
    """

    def __init__(self, custom_objects: Any):
        self.custom_objects = custom_objects

    @classmethod
    def from_configuration(cls, configuration: k8s_client.Configuration) -> 'KarpenterClient':
        api_client = k8s_client.ApiClient(configuration)
        return cls(k8s_client.CustomObjectsApi(api_client))

    def get_nodepool(self, name: str) -> NodePool:
        try:
            obj = self.custom_objects.get_cluster_custom_object(
                KARPENTER_GROUP, KARPENTER_VERSION, NODEPOOL_PLURAL, name
            )
        except (ApiException, HTTPError) as e:
            raise _api_error(e, 'get', 'nodepool', name) from e
        return NodePool.from_object(obj)

    def update_nodepool(self, nodepool: NodePool) -> NodePool:
        try:
            obj = self.custom_objects.replace_cluster_custom_object(
                KARPENTER_GROUP, KARPENTER_VERSION, NODEPOOL_PLURAL, nodepool.name, nodepool.to_object()
            )
        except (ApiException, HTTPError) as e:
            raise _api_error(e, 'update', 'nodepool', nodepool.name) from e
        return NodePool.from_object(obj)

    def list_nodeclaims(self, label_selector: str) -> List[NodeClaim]:
        try:
            result = self.custom_objects.list_cluster_custom_object(
                KARPENTER_GROUP, KARPENTER_VERSION, NODECLAIM_PLURAL, label_selector=label_selector
            )
        except (ApiException, HTTPError) as e:
            raise _api_error(e, 'list', 'nodeclaims', label_selector) from e
        return [NodeClaim.from_object(item) for item in result.get('items', [])]

    def delete_nodeclaim(self, name: str) -> None:
        try:
            self.custom_objects.delete_cluster_custom_object(
                KARPENTER_GROUP, KARPENTER_VERSION, NODECLAIM_PLURAL, name
            )
        except (ApiException, HTTPError) as e:
            raise _api_error(e, 'delete', 'nodeclaim', name) from e


def generate_eks_token(session: boto3.Session, cluster_name: str, region: str) -> str:
    """Create a bearer token for the EKS API from the session's credentials.

    The token is a presigned STS GetCallerIdentity URL bound to the cluster
    through the x-k8s-aws-id header, the same scheme aws-iam-authenticator uses.
    """
    sts = session.client('sts', region_name=region)
    signer = RequestSigner(
        sts.meta.service_model.service_id,
        region,
        'sts',
        'v4',
        session.get_credentials(),
        session.events
    )
    params = {
        'method': 'GET',
        'url': f"{sts.meta.endpoint_url.rstrip('/')}/?Action=GetCallerIdentity&Version=2011-06-15",
        'body': {},
        'headers': {CLUSTER_ID_HEADER: cluster_name},
        'context': {}
    }
    signed_url = signer.generate_presigned_url(
        params,
        region_name=region,
        expires_in=TOKEN_EXPIRY_SECONDS,
        operation_name=''
    )
    encoded = base64.urlsafe_b64encode(signed_url.encode('utf-8')).decode('utf-8')
    return TOKEN_PREFIX + encoded.rstrip('=')


def _write_ca_bundle(cluster_name: str, ca_data: bytes) -> str:
    # One file per cluster, overwritten on every run
    ca_path = os.path.join(log_dir, f"ca-{cluster_name}.crt")
    with open(ca_path, "wb") as ca_file:
        ca_file.write(ca_data)
    return ca_path


def resolve_cluster_client(config: ScheduleConfig, session: Optional[boto3.Session] = None) -> KarpenterClient:
    """Build a Karpenter client authenticated with a short-lived EKS token.

    Args:
        config: Run configuration
        session: boto3 session to use (default: a new session for config.region)

    Returns:
        KarpenterClient: Client bound to the cluster API

    Raises:
        CredentialError: If the cluster is unset, the token cannot be created
            or the cluster endpoint and CA cannot be retrieved
    """
    if not config.cluster_name:
        raise CredentialError("Cluster name is not set")

    logger.debug("Resolving credentials for cluster: %s", config.cluster_name)
    try:
        session = session or boto3.Session(region_name=config.region)
        if session.get_credentials() is None:
            raise CredentialError("No AWS credentials available in the environment")

        identity = session.client('sts', region_name=config.region).get_caller_identity()
        logger.debug("Using AWS account: %s", identity.get('Account'))

        token = generate_eks_token(session, config.cluster_name, config.region)

        eks = session.client('eks', region_name=config.region)
        cluster = eks.describe_cluster(name=config.cluster_name)['cluster']
    except (ClientError, BotoCoreError) as e:
        raise CredentialError(f"Failed to resolve credentials for cluster {config.cluster_name}: {str(e)}") from e

    ca_data = (cluster.get('certificateAuthority') or {}).get('data')
    if not ca_data:
        raise CredentialError(f"Cluster {config.cluster_name} has no certificate authority data")
    try:
        ca_bytes = base64.b64decode(ca_data)
    except ValueError as e:
        raise CredentialError(f"Invalid certificate authority data for cluster {config.cluster_name}") from e

    endpoint = config.api_endpoint or _normalize_endpoint(cluster.get('endpoint'))
    if not endpoint:
        raise CredentialError(f"No API endpoint known for cluster {config.cluster_name}")

    configuration = k8s_client.Configuration()
    configuration.host = endpoint
    configuration.api_key = {'authorization': token}
    configuration.api_key_prefix = {'authorization': 'Bearer'}
    configuration.ssl_ca_cert = _write_ca_bundle(config.cluster_name, ca_bytes)

    logger.info(f"Connected to cluster {config.cluster_name} at {endpoint}")
    return KarpenterClient.from_configuration(configuration)


def reconcile_nodepool(store: Any, nodepool_name: str, action: Any,
                       cpu_limit: Optional[str] = None, cpu_default: str = DEFAULT_CPU_LIMIT,
                       dry_run: bool = False) -> NodePool:
    """Set the CPU limit of a NodePool for the given action.

    The whole object is read, the limit changed and the object written back
    with the same resourceVersion, so a concurrent change is reported as a
    conflict instead of being overwritten.

    Args:
        store: Client exposing get_nodepool and update_nodepool
        nodepool_name: Name of the NodePool
        action: Action.SHUTDOWN or Action.STARTUP; anything else leaves the pool untouched
        cpu_limit: Startup CPU limit override
        cpu_default: CPU limit used on startup when no override is set
        dry_run: If True, only show what would be changed

    Returns:
        NodePool: The NodePool as written (or as read, for a no-op)

    Raises:
        NotFoundError: If the NodePool does not exist
        ConflictError: If the NodePool changed between read and write
        ProviderError: If the API call fails
    """
    nodepool = store.get_nodepool(nodepool_name)
    current = nodepool.cpu_limit

    if action == Action.SHUTDOWN:
        target = SHUTDOWN_CPU_LIMIT
    elif action == Action.STARTUP:
        if cpu_limit:
            target = cpu_limit
        else:
            logger.info(f"No CPU limit override configured, using default of {cpu_default}")
            target = cpu_default
    else:
        logger.warning(f"Unrecognized action {action!r}, leaving nodepool {nodepool_name} unchanged")
        return nodepool

    if dry_run:
        logger.info(f"[DRY RUN] Would set CPU limit of nodepool {nodepool_name} from {current} to {target}")
        return nodepool

    logger.info(f"  → Updating nodepool {nodepool_name}: CPU limit {current} → {target}")
    nodepool.cpu_limit = target
    updated = store.update_nodepool(nodepool)
    logger.info(f"  ✓ Successfully updated nodepool {nodepool_name}")
    return updated


def purge_nodeclaims(store: Any, nodepool_name: str, dry_run: bool = False) -> List[str]:
    """Delete every NodeClaim labelled with the NodePool name.

    Deletion is sequential and stops at the first failure; claims already
    deleted stay deleted.

    Returns:
        List[str]: Names of the deleted (or, in dry run, matching) NodeClaims

    Raises:
        NodePoolScheduleError: The error of the failed list or delete call, unchanged in kind
    """
    label_selector = f"{NODEPOOL_LABEL}={nodepool_name}"
    claims = store.list_nodeclaims(label_selector)

    if not claims:
        logger.info(f"No nodeclaims found with label selector: {label_selector}")
        return []

    logger.info(f"Found {len(claims)} nodeclaim(s) with label selector {label_selector}")
    deleted = []
    for claim in claims:
        if dry_run:
            logger.info(f"[DRY RUN] Would delete nodeclaim: {claim.name}")
            deleted.append(claim.name)
            continue

        logger.info(f"  → Deleting nodeclaim: {claim.name}")
        try:
            store.delete_nodeclaim(claim.name)
        except NodePoolScheduleError as e:
            logger.error(f"Failed to delete nodeclaim {claim.name}: {str(e)}")
            raise
        deleted.append(claim.name)
        logger.debug(f"Deleted nodeclaim: {claim.name}")

    return deleted


def _describe_instance_ids(ec2: Any, filters: List[Dict[str, Any]]) -> List[str]:
    instance_ids = []
    paginator = ec2.get_paginator('describe_instances')
    for page in paginator.paginate(Filters=filters):
        for reservation in page.get('Reservations', []):
            for instance in reservation.get('Instances', []):
                instance_ids.append(instance['InstanceId'])
    return instance_ids


def sweep_instances(ec2: Any, nodepool_names: List[str], shutdown_tag: Optional[str] = None,
                    dry_run: bool = False) -> List[str]:
    """Terminate EC2 instances tagged with any of the NodePool names.

    All pools are matched by a single describe call on the
    karpenter.sh/nodepool tag, and every instance found is terminated with a
    single bulk call.

    Args:
        ec2: boto3 EC2 client
        nodepool_names: NodePool names to match against the instance tag
        shutdown_tag: Extra tag key; instances tagged "<key>=true" are swept too
        dry_run: If True, only show what would be terminated

    Returns:
        List[str]: IDs of the terminated (or, in dry run, matching) instances

    Raises:
        ValidationError: If no NodePool names are given
        ProviderError: If describing or terminating instances fails
    """
    if not nodepool_names:
        raise ValidationError("At least one nodepool name is required to sweep instances")

    state_filter = {'Name': 'instance-state-name', 'Values': SWEEPABLE_STATES}
    queries = [[{'Name': f"tag:{NODEPOOL_LABEL}", 'Values': list(nodepool_names)}, state_filter]]
    if shutdown_tag:
        queries.append([{'Name': f"tag:{shutdown_tag}", 'Values': ['true']}, state_filter])

    instance_ids: List[str] = []
    try:
        for filters in queries:
            for instance_id in _describe_instance_ids(ec2, filters):
                if instance_id not in instance_ids:
                    instance_ids.append(instance_id)
    except (ClientError, BotoCoreError) as e:
        raise ProviderError(f"Failed to describe instances for nodepools {', '.join(nodepool_names)}: {str(e)}") from e

    if not instance_ids:
        logger.info("No tagged instances found to terminate")
        return []

    if dry_run:
        logger.info(f"[DRY RUN] Would terminate instances: {', '.join(instance_ids)}")
        return instance_ids

    logger.info(f"  → Terminating {len(instance_ids)} instance(s): {', '.join(instance_ids)}")
    try:
        ec2.terminate_instances(InstanceIds=instance_ids)
    except (ClientError, BotoCoreError) as e:
        raise ProviderError(f"Failed to terminate instances {', '.join(instance_ids)}: {str(e)}") from e
    logger.info(f"  ✓ Terminate requested for {len(instance_ids)} instance(s)")
    return instance_ids


def _log_summary(summary: RunSummary) -> None:
    logger.info("")
    logger.info("=" * 60)
    if summary.dry_run:
        logger.info("SUMMARY (DRY RUN - No changes were made)")
    else:
        logger.info("SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Action: {summary.action.value}")
    logger.info(f"Nodepools reconciled: {', '.join(summary.reconciled) or 'none'}")
    logger.info(f"Nodeclaims deleted: {len(summary.deleted_claims)}")
    logger.info(f"Instances terminated: {len(summary.terminated_instances)}")
    logger.info("=" * 60)


def run_schedule(config: ScheduleConfig, action: Action, store: Any, ec2: Any) -> RunSummary:
    """Run one shutdown or startup pass over all configured node pools.

    Pools are processed one after the other; the first failure stops the run
    and pools already reconciled stay reconciled.

    Args:
        config: Run configuration
        action: Action to perform
        store: Client exposing the NodePool/NodeClaim operations
        ec2: boto3 EC2 client

    Returns:
        RunSummary: What was changed

    Raises:
        NodePoolScheduleError: On the first failing step
    """
    summary = RunSummary(action=action, dry_run=config.dry_run)
    logger.info(f"Running {action.value} for cluster {config.cluster_name}: nodepools {', '.join(config.nodepool_names)}")
    if config.dry_run:
        logger.info("DRY RUN MODE - No changes will be made")

    try:
        for nodepool_name in config.nodepool_names:
            reconcile_nodepool(
                store,
                nodepool_name,
                action,
                cpu_limit=config.cpu_limit,
                dry_run=config.dry_run
            )
            summary.reconciled.append(nodepool_name)

            if action == Action.SHUTDOWN:
                summary.deleted_claims.extend(
                    purge_nodeclaims(store, nodepool_name, dry_run=config.dry_run)
                )

        summary.terminated_instances = sweep_instances(
            ec2,
            config.nodepool_names,
            shutdown_tag=config.shutdown_tag,
            dry_run=config.dry_run
        )
    except NodePoolScheduleError as e:
        logger.error(f"Error running {action.value}: {str(e)}")
        if summary.reconciled:
            logger.error(f"Nodepools already reconciled before the failure: {', '.join(summary.reconciled)}")
        raise

    _log_summary(summary)
    return summary


def execute(config: ScheduleConfig, action: Action, session: Optional[boto3.Session] = None) -> RunSummary:
    """Resolve the clients for a configuration and run the schedule."""
    logger.setLevel(getattr(logging, config.log_level, logging.INFO))
    session = session or boto3.Session(region_name=config.region)
    store = resolve_cluster_client(config, session=session)
    ec2 = session.client('ec2', region_name=config.region)
    return run_schedule(config, action, store, ec2)


def handler(event: Optional[Mapping[str, Any]], context: Any = None) -> None:
    """Lambda entry point.

    Configuration and the action are validated before any AWS or Kubernetes
    call is made. Any failure is raised so the invocation is reported as failed.
    """
    config = ScheduleConfig.from_env()
    action = Action.from_event(event)
    execute(config, action)


def _build_config(args: argparse.Namespace, environ: Mapping[str, str]) -> ScheduleConfig:
    env = dict(environ)
    overrides = {
        'KUBERNETES_CLUSTER_NAME': args.cluster_name,
        'KARPENTER_NODEPOOL_NAME': args.nodepools,
        'KARPENTER_NODEPOOL_LIMITS_CPU': args.cpu_limit,
        'KUBERNETES_SERVICE_HOST': args.endpoint,
        'AWS_REGION': args.region,
        'SHUTDOWN_TAG': args.shutdown_tag,
    }
    env.update({key: value for key, value in overrides.items() if value is not None})
    if args.dry_run:
        env['DRY_RUN'] = 'true'
    if args.verbose == 1:
        env['LOG_LEVEL'] = 'INFO'
    elif args.verbose >= 2:
        env['LOG_LEVEL'] = 'DEBUG'
    return ScheduleConfig.from_env(env)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the script.

    Any flag not given on the command line falls back to its environment variable.
    """
    parser = argparse.ArgumentParser(
        prog='python3 manage_nodepools.py',
        description='Suspend or resume Karpenter node pools on an EKS cluster',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Required arguments
    parser.add_argument(
        '--action',
        required=True,
        choices=[a.value for a in Action],
        help='Action to perform: shutdown or startup (REQUIRED)'
    )

    # Optional arguments
    parser.add_argument(
        '--cluster-name',
        help='Name of the EKS cluster (default: $KUBERNETES_CLUSTER_NAME)'
    )
    parser.add_argument(
        '--nodepools',
        help='Comma separated Karpenter NodePool names (default: $KARPENTER_NODEPOOL_NAME)'
    )
    parser.add_argument(
        '--cpu-limit',
        help=f'CPU limit restored on startup (default: $KARPENTER_NODEPOOL_LIMITS_CPU or {DEFAULT_CPU_LIMIT})'
    )
    parser.add_argument(
        '--endpoint',
        help='Kubernetes API endpoint (default: $KUBERNETES_SERVICE_HOST or the cluster endpoint)'
    )
    parser.add_argument(
        '--region',
        help=f'AWS region (default: $AWS_REGION or {DEFAULT_REGION})'
    )
    parser.add_argument(
        '--shutdown-tag',
        help='Extra tag key; instances tagged <key>=true are terminated too (default: $SHUTDOWN_TAG)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be changed without making actual changes'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='count',
        default=0,
        help='Increase verbosity (can be used multiple times)'
    )

    args = parser.parse_args(argv)

    try:
        config = _build_config(args, os.environ)
        execute(config, Action(args.action))
    except (ConfigurationError, ValidationError) as e:
        logger.error(f"Validation error: {str(e)}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Script execution failed: {str(e)}")
        if args.verbose >= 2:
            logger.exception("Detailed error information:")
        sys.exit(1)


if __name__ == '__main__':
    main()
