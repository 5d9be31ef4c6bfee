"""
IAM collector: users, their MFA binding, password and access keys
"""
import logging
from functools import partial

from botocore.exceptions import BotoCoreError, ClientError

from . import config
from .core import Collector
from .exceptions import ServiceError
from .tree import IdentityData, IdentityKey, IdentityUser, KeyLastUsed, MFAType, PasswordMetadata
from .utils import api_call, error_code, ordered_map, paginate

logger = logging.getLogger(__name__)

# Virtual MFA serials are ARNs of the form arn:aws:iam::<account>:mfa/<name>
VIRTUAL_MFA_MARKER = ':mfa/'


def list_users(iam_client):
    """
    List all IAM users.

    Args:
        iam_client: Boto3 IAM client

    Returns:
        list: User dictionaries as returned by ListUsers
    """
    users = []
    with api_call('iam', 'ListUsers'):
        for page in paginate(iam_client, 'list_users'):
            users.extend(page['Users'])
    return users


def list_mfa_serials(iam_client, user_name):
    """
    List the serial numbers of the MFA devices bound to a user.

    IAM has no bulk lookup covering both hardware and virtual devices, so
    this is one call per user.

    Args:
        iam_client: Boto3 IAM client
        user_name: IAM user name

    Returns:
        list: Serial numbers, in the order IAM returns them
    """
    serials = []
    with api_call('iam', 'ListMFADevices', user_name):
        for page in paginate(iam_client, 'list_mfa_devices', UserName=user_name):
            serials.extend(device['SerialNumber'] for device in page['MFADevices'])
    return serials


def classify_mfa(serial):
    """
    Classify an MFA serial number.

    Args:
        serial: Serial number of the user's MFA device, or None

    Returns:
        MFAType: VIRTUAL for virtual device ARNs, HARDWARE for any other
        serial, NONE when there is no device
    """
    if not serial:
        return MFAType.NONE
    if VIRTUAL_MFA_MARKER in serial:
        return MFAType.VIRTUAL
    return MFAType.HARDWARE


def get_password_metadata(iam_client, user):
    """
    Get password creation and last use for a user.

    A user without a login profile is an API-only user; that is not an error.

    Args:
        iam_client: Boto3 IAM client
        user: User dictionary from ListUsers

    Returns:
        PasswordMetadata: Empty when the user has no console password
    """
    user_name = user['UserName']
    try:
        profile = iam_client.get_login_profile(UserName=user_name)['LoginProfile']
    except ClientError as e:
        if error_code(e) == 'NoSuchEntity':
            logger.debug("User %s has no login profile", user_name)
            return PasswordMetadata()
        raise ServiceError('iam', 'GetLoginProfile', entity=user_name, cause=e) from e
    except BotoCoreError as e:
        raise ServiceError('iam', 'GetLoginProfile', entity=user_name, cause=e) from e

    return PasswordMetadata(
        created_at=profile.get('CreateDate'),
        last_used=user.get('PasswordLastUsed'),
    )


def get_key_last_used(iam_client, access_key_id, user_name=None):
    """
    Get last-used metadata of an access key.

    Args:
        iam_client: Boto3 IAM client
        access_key_id: Access key ID
        user_name: Owner of the key, for error messages

    Returns:
        KeyLastUsed or None: None if the key has never been used
    """
    with api_call('iam', 'GetAccessKeyLastUsed', f"{user_name}:{access_key_id}" if user_name else access_key_id):
        response = iam_client.get_access_key_last_used(AccessKeyId=access_key_id)

    last_used = response.get('AccessKeyLastUsed') or {}
    if not last_used.get('LastUsedDate'):
        return None
    return KeyLastUsed(
        date=last_used['LastUsedDate'],
        region=last_used.get('Region', ''),
        service_name=last_used.get('ServiceName', ''),
    )


def list_access_keys(iam_client, user_name):
    """
    List a user's access keys with their last-used metadata.

    Args:
        iam_client: Boto3 IAM client
        user_name: IAM user name

    Returns:
        tuple: IdentityKey records in listing order
    """
    metadata = []
    with api_call('iam', 'ListAccessKeys', user_name):
        for page in paginate(iam_client, 'list_access_keys', UserName=user_name):
            metadata.extend(page['AccessKeyMetadata'])

    return tuple(
        IdentityKey(
            id=key['AccessKeyId'],
            created_at=key['CreateDate'],
            status=key['Status'],
            last_used=get_key_last_used(iam_client, key['AccessKeyId'], user_name),
        )
        for key in metadata
    )


def build_user(iam_client, user):
    """
    Collect everything the audit records about one user.

    Args:
        iam_client: Boto3 IAM client
        user: User dictionary from ListUsers

    Returns:
        IdentityUser
    """
    user_name = user['UserName']
    serials = list_mfa_serials(iam_client, user_name)
    if len(serials) > 1:
        logger.info("User %s has %d MFA devices, classifying by %s", user_name, len(serials), serials[0])

    password = get_password_metadata(iam_client, user)
    keys = list_access_keys(iam_client, user_name)
    try:
        return IdentityUser(
            arn=user['Arn'],
            id=user['UserId'],
            name=user_name,
            path=user['Path'],
            created_at=user['CreateDate'],
            mfa_type=classify_mfa(serials[0] if serials else None),
            password=password,
            keys=keys,
        )
    except ValueError as e:
        raise ServiceError('iam', 'ListAccessKeys', entity=user_name, message=str(e)) from e


class IdentityCollector(Collector):
    """Builds the iam subtree"""

    target = 'iam'

    def __init__(self, max_workers=None):
        self.max_workers = config.MAX_WORKERS if max_workers is None else max_workers

    def name(self):
        return 'IAM'

    def populate(self, session, tree):
        iam_client = session.client('iam')
        users = list_users(iam_client)
        logger.info("Found %d IAM users", len(users))
        built = ordered_map(partial(build_user, iam_client), users, self.max_workers)
        try:
            return IdentityData(users=tuple(built))
        except ValueError as e:
            raise ServiceError('iam', 'ListUsers', message=str(e)) from e
