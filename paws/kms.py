"""
KMS collector: keys, their state, rotation and key policy
"""
import logging
from functools import partial

from . import config
from .core import Collector
from .exceptions import ServiceError
from .policy import extract_statements
from .tree import KeyManagementData, KeyPolicy, KeyState, ManagedKey
from .utils import api_call, ordered_map, paginate

logger = logging.getLogger(__name__)


def list_keys(kms_client):
    """
    List all KMS keys in the client's region.

    Args:
        kms_client: Boto3 KMS client

    Returns:
        list: Key list entries with KeyId and KeyArn
    """
    keys = []
    with api_call('kms', 'ListKeys'):
        for page in paginate(kms_client, 'list_keys'):
            keys.extend(page['Keys'])
    return keys


def describe_key(kms_client, key_id):
    """
    Get the metadata of a key.

    Args:
        kms_client: Boto3 KMS client
        key_id: KMS key ID

    Returns:
        dict: KeyMetadata
    """
    with api_call('kms', 'DescribeKey', key_id):
        return kms_client.describe_key(KeyId=key_id)['KeyMetadata']


def get_rotation_status(kms_client, key_id):
    """
    Check whether automatic rotation is enabled for a key.

    Args:
        kms_client: Boto3 KMS client
        key_id: KMS key ID

    Returns:
        bool: True if rotation is enabled
    """
    with api_call('kms', 'GetKeyRotationStatus', key_id):
        response = kms_client.get_key_rotation_status(KeyId=key_id)
    return bool(response.get('KeyRotationEnabled', False))


def get_key_policy(kms_client, key_id):
    """
    Fetch and parse the policy attached to a key.

    KMS models a list of policy names but a key has exactly one policy,
    named 'default'; the first name listed is used.

    Args:
        kms_client: Boto3 KMS client
        key_id: KMS key ID

    Returns:
        KeyPolicy: Policy name and its statements in document order
    """
    names = []
    with api_call('kms', 'ListKeyPolicies', key_id):
        for page in paginate(kms_client, 'list_key_policies', KeyId=key_id):
            names.extend(page['PolicyNames'])
    if not names:
        raise ServiceError('kms', 'ListKeyPolicies', entity=key_id, message=f"No key policy attached to {key_id}")

    policy_name = names[0]
    with api_call('kms', 'GetKeyPolicy', key_id):
        text = kms_client.get_key_policy(KeyId=key_id, PolicyName=policy_name)['Policy']

    return KeyPolicy(name=policy_name, statements=extract_statements(text, entity=key_id))


def build_key(kms_client, key):
    """
    Collect everything the audit records about one key.

    Args:
        kms_client: Boto3 KMS client
        key: Entry from ListKeys

    Returns:
        ManagedKey
    """
    key_id = key['KeyId']
    metadata = describe_key(kms_client, key_id)
    try:
        state = KeyState(metadata['KeyState'])
    except ValueError as e:
        raise ServiceError('kms', 'DescribeKey', entity=key_id,
                           message=f"Unknown key state {metadata['KeyState']!r} for {key_id}") from e

    return ManagedKey(
        arn=key.get('KeyArn') or metadata['Arn'],
        id=key_id,
        enabled=bool(metadata.get('Enabled', False)),
        state=state,
        rotation_enabled=get_rotation_status(kms_client, key_id),
        policy=get_key_policy(kms_client, key_id),
        key_manager=metadata.get('KeyManager'),
        description=metadata.get('Description'),
    )


class KeyCollector(Collector):
    """Builds the kms subtree"""

    target = 'kms'

    def __init__(self, max_workers=None):
        self.max_workers = config.MAX_WORKERS if max_workers is None else max_workers

    def name(self):
        return 'KMS'

    def populate(self, session, tree):
        kms_client = session.client('kms')
        keys = list_keys(kms_client)
        logger.info("Found %d KMS keys", len(keys))
        built = ordered_map(partial(build_key, kms_client), keys, self.max_workers)
        try:
            return KeyManagementData(keys=tuple(built))
        except ValueError as e:
            raise ServiceError('kms', 'ListKeys', message=str(e)) from e
