"""
Audit tree data model.

The tree is the complete picture of one scan. Everything below AuditData is
immutable; AuditData itself is only written by the orchestrator through
attach().
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from .exceptions import CollectorOrderError


def _isoformat(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _ensure_unique(values, what):
    seen = set()
    for value in values:
        if value in seen:
            raise ValueError(f"Duplicate {what}: {value}")
        seen.add(value)


class MFAType(Enum):
    NONE = 'none'
    VIRTUAL = 'virtual'
    HARDWARE = 'hardware'


class KeyState(Enum):
    """KMS key lifecycle states"""

    CREATING = 'Creating'
    ENABLED = 'Enabled'
    DISABLED = 'Disabled'
    PENDING_DELETION = 'PendingDeletion'
    PENDING_IMPORT = 'PendingImport'
    PENDING_REPLICA_DELETION = 'PendingReplicaDeletion'
    UNAVAILABLE = 'Unavailable'
    UPDATING = 'Updating'


@dataclass(frozen=True)
class KeyLastUsed:
    date: datetime
    region: str
    service_name: str

    def to_dict(self):
        return {
            'date': _isoformat(self.date),
            'region': self.region,
            'serviceName': self.service_name,
        }


@dataclass(frozen=True)
class IdentityKey:
    """An IAM access key belonging to a single user"""

    id: str
    created_at: datetime
    status: str
    last_used: Optional[KeyLastUsed] = None

    def to_dict(self):
        return {
            'id': self.id,
            'createdAt': _isoformat(self.created_at),
            'status': self.status,
            'lastUsed': self.last_used.to_dict() if self.last_used else None,
        }


@dataclass(frozen=True)
class PasswordMetadata:
    created_at: Optional[datetime] = None
    last_used: Optional[datetime] = None

    def to_dict(self):
        return {
            'createdAt': _isoformat(self.created_at),
            'lastUsed': _isoformat(self.last_used),
        }


@dataclass(frozen=True)
class IdentityUser:
    """A single IAM user as seen by the scan"""

    arn: str
    id: str
    name: str
    path: str
    created_at: datetime
    mfa_type: MFAType = MFAType.NONE
    password: PasswordMetadata = field(default_factory=PasswordMetadata)
    keys: Tuple[IdentityKey, ...] = ()

    def __post_init__(self):
        _ensure_unique((key.id for key in self.keys), f"access key for {self.name}")

    def to_dict(self):
        return {
            'arn': self.arn,
            'createdAt': _isoformat(self.created_at),
            'path': self.path,
            'id': self.id,
            'name': self.name,
            'mfaType': self.mfa_type.value,
            'keys': [key.to_dict() for key in self.keys],
            'password': self.password.to_dict(),
        }


@dataclass(frozen=True)
class IdentityData:
    users: Tuple[IdentityUser, ...] = ()

    def __post_init__(self):
        _ensure_unique((user.arn for user in self.users), "user ARN")

    def to_dict(self):
        return {'users': [user.to_dict() for user in self.users]}


@dataclass(frozen=True)
class PolicyStatement:
    """One statement of a key policy, reduced to the fields the audit cares about"""

    sid: str = ''
    actions: FrozenSet[str] = frozenset()
    bypass_policy_lockout_safety_check: bool = False
    multi_factor_auth_age: Optional[int] = None

    def to_dict(self):
        return {
            'sid': self.sid,
            'actions': sorted(self.actions),
            'bypassPolicyLockoutSafetyCheck': self.bypass_policy_lockout_safety_check,
            'multiFactorAuthAge': self.multi_factor_auth_age,
        }


@dataclass(frozen=True)
class KeyPolicy:
    name: str
    statements: Tuple[PolicyStatement, ...] = ()

    def to_dict(self):
        return {
            'name': self.name,
            'statements': [statement.to_dict() for statement in self.statements],
        }


@dataclass(frozen=True)
class ManagedKey:
    """A KMS key with its state, rotation setting and key policy"""

    arn: str
    id: str
    enabled: bool
    state: KeyState
    rotation_enabled: bool
    policy: KeyPolicy
    key_manager: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self):
        return {
            'arn': self.arn,
            'id': self.id,
            'enabled': self.enabled,
            'state': self.state.value,
            'rotationEnabled': self.rotation_enabled,
            'keyManager': self.key_manager,
            'description': self.description,
            'policy': self.policy.to_dict(),
        }


@dataclass(frozen=True)
class PolicyCrossReferenceMatch:
    """
    An IAM managed policy whose text mentions KMS actions.

    This is a pointer for human review, not a statement about effective
    permissions.
    """

    policy_name: str
    raw_statement_text: str
    policy_arn: Optional[str] = None
    matched_actions: Tuple[str, ...] = ()

    def to_dict(self):
        return {
            'policyName': self.policy_name,
            'policyArn': self.policy_arn,
            'matchedActions': list(self.matched_actions),
            'rawStatementText': self.raw_statement_text,
        }


@dataclass(frozen=True)
class KeyManagementData:
    keys: Tuple[ManagedKey, ...] = ()
    policy_references: Tuple[PolicyCrossReferenceMatch, ...] = ()

    def __post_init__(self):
        _ensure_unique((key.id for key in self.keys), "KMS key ID")

    def to_dict(self):
        return {
            'keys': [key.to_dict() for key in self.keys],
            'policyReferences': [match.to_dict() for match in self.policy_references],
        }


@dataclass
class AuditData:
    """Root of the per-service subtrees. A subtree is None until its collector finished."""

    iam: Optional[IdentityData] = None
    kms: Optional[KeyManagementData] = None

    def attach(self, target, value):
        """
        Store a collector result at its target.

        Args:
            target: 'iam', 'kms' or 'kms.policy_references'
            value: Subtree value returned by the collector

        Raises:
            CollectorOrderError: KMS references without a KMS subtree
            ValueError: Unknown target
        """
        if target == 'iam':
            self.iam = value
        elif target == 'kms':
            self.kms = value
        elif target == 'kms.policy_references':
            if self.kms is None:
                raise CollectorOrderError("KMS policy references require the kms subtree")
            self.kms = replace(self.kms, policy_references=tuple(value))
        else:
            raise ValueError(f"Unknown audit subtree: {target}")

    def to_dict(self):
        return {
            'iam': self.iam.to_dict() if self.iam else None,
            'kms': self.kms.to_dict() if self.kms else None,
        }


@dataclass
class AuditTree:
    """Complete picture of an AWS account scan"""

    audit: AuditData = field(default_factory=AuditData)

    def to_dict(self):
        return {'audit': self.audit.to_dict()}
