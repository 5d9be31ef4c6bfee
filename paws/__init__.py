"""
PAWS - Posture Audit for AWS

A command-line tool that takes a read-only snapshot of the IAM users and
KMS keys of an AWS account and reports it as one JSON document.
"""

__version__ = '0.3.0'
__author__ = 'Aswanth'
__email__ = 'aswanthrajan97@gmail.com'
__description__ = 'IAM and KMS security posture audit for AWS'
__url__ = 'https://github.com/'

from .core import Collector, Orchestrator, default_collectors, run_audit
from .crossref import PolicyCrossReferencer
from .exceptions import CollectorOrderError, MalformedPolicyError, PawsError, ServiceError, SessionError
from .iam import IdentityCollector
from .kms import KeyCollector
from .policy import extract_statements, parse_policy_document
from .tree import AuditTree
