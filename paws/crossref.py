"""
Cross-reference IAM managed policies with KMS.

Customer managed policies that are attached to at least one principal are
scanned for KMS action names. A match is a coarse flag for human triage: the
raw text is searched, conditions and resources are not evaluated.

Because the search is a substring match, condition keys also count: a policy
that only mentions kms:EncryptionContext... is reported under kms:Encrypt.
"""
import logging

from .core import Collector
from .exceptions import CollectorOrderError
from .policy import document_text
from .tree import PolicyCrossReferenceMatch
from .utils import api_call, paginate

logger = logging.getLogger(__name__)

KMS_WATCH_LIST = (
    'kms:*',
    'kms:Create',
    'kms:Describe',
    'kms:Enable',
    'kms:List',
    'kms:Put',
    'kms:Update',
    'kms:Revoke',
    'kms:Disable',
    'kms:Get',
    'kms:Delete',
    'kms:TagResource',
    'kms:UntagResource',
    'kms:ScheduleKeyDeletion',
    'kms:CancelKeyDeletion',
    'kms:Decrypt',
    'kms:Encrypt',
    'kms:ReEncrypt',
    'kms:GenerateDataKey',
    'kms:Sign',
    'kms:Verify',
)


def list_attached_policies(iam_client):
    """
    List customer managed policies attached to at least one user, group or role.

    Args:
        iam_client: Boto3 IAM client

    Returns:
        list: Policy dictionaries from ListPolicies
    """
    policies = []
    with api_call('iam', 'ListPolicies'):
        for page in paginate(iam_client, 'list_policies', Scope='Local', OnlyAttached=True):
            policies.extend(page['Policies'])
    return policies


def get_policy_document_text(iam_client, policy):
    """
    Fetch the raw text of a policy's default version.

    Args:
        iam_client: Boto3 IAM client
        policy: Policy dictionary from ListPolicies

    Returns:
        str: Policy document text
    """
    with api_call('iam', 'GetPolicyVersion', policy['PolicyName']):
        version = iam_client.get_policy_version(
            PolicyArn=policy['Arn'],
            VersionId=policy['DefaultVersionId']
        )['PolicyVersion']
    return document_text(version['Document'])


def find_watched_actions(text):
    """
    Find KMS watch-list entries mentioned in a policy text.

    Args:
        text: Raw policy document text

    Returns:
        tuple: Matching watch-list entries, in watch-list order
    """
    lowered = text.lower()
    return tuple(action for action in KMS_WATCH_LIST if action.lower() in lowered)


class PolicyCrossReferencer(Collector):
    """Attaches KMS-relevant IAM policies to the kms subtree"""

    target = 'kms.policy_references'

    def name(self):
        return 'IAM-KMS'

    def populate(self, session, tree):
        if tree.audit.kms is None:
            raise CollectorOrderError("The KMS collector must run before the policy cross-reference")

        iam_client = session.client('iam')
        matches = []
        for policy in list_attached_policies(iam_client):
            text = get_policy_document_text(iam_client, policy)
            actions = find_watched_actions(text)
            if not actions:
                continue
            logger.info("Policy %s references KMS actions: %s", policy['PolicyName'], ', '.join(actions))
            matches.append(PolicyCrossReferenceMatch(
                policy_name=policy['PolicyName'],
                raw_statement_text=text,
                policy_arn=policy['Arn'],
                matched_actions=actions,
            ))
        return tuple(matches)
