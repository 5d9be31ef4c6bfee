"""
CLI interface for PAWS
"""
import logging
import sys

import boto3
import click
from botocore.exceptions import BotoCoreError
from colorama import Fore, Style

from . import __version__, config
from .core import Orchestrator
from .crossref import PolicyCrossReferencer
from .exceptions import PawsError, SessionError
from .iam import IdentityCollector
from .kms import KeyCollector
from .utils import create_summary_tables, render_json

CONTEXT_SETTINGS = dict(help_option_names=['-h', '--help'])


def create_session(profile=None, region=config.AWS_REGION):
    """
    Create the boto3 session shared by all collectors.

    Args:
        profile: AWS profile name, None for the default credential chain
        region: AWS region for regional services (KMS)

    Returns:
        boto3.Session

    Raises:
        SessionError: If the profile does not exist or no credentials are found
    """
    try:
        session = boto3.Session(profile_name=profile, region_name=region)
    except BotoCoreError as e:
        raise SessionError("Couldn't set up AWS session", cause=e) from e
    if session.get_credentials() is None:
        raise SessionError("Couldn't set up AWS session: no credentials found")
    return session


def configure_logging(verbose):
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format='%(asctime)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(
    version=__version__,
    prog_name='PAWS',
    message='%(prog)s v%(version)s - IAM and KMS posture audit for AWS'
)
def main():
    """
    \b
    PAWS - Posture Audit for AWS

    Takes a read-only snapshot of the IAM users and KMS keys of an AWS
    account and prints it as a single JSON report.

    \b
    Commands:
      scan            Collect the audit report
      docs            Describe the fields of the report
      version         Show the version and exit

    \b
    Examples:
      paws scan > audit.json
      paws scan --profile production --region eu-west-1 --output table
    """
    pass


@main.command('scan')
@click.option('--profile', default=None,
              help='AWS profile to use (default credential chain if omitted)')
@click.option('--region', default=config.AWS_REGION, show_default=True,
              help='AWS region to scan for KMS keys')
@click.option('--output', type=click.Choice(['json', 'table']), default='json',
              help='Output format of the report')
@click.option('--max-workers', type=click.IntRange(min=1), default=config.MAX_WORKERS, show_default=True,
              help='Concurrent per-user and per-key API lookups')
@click.option('--verbose', '-v', is_flag=True, help='Log progress to stderr')
def scan(profile, region, output, max_workers, verbose):
    """
    Collect the IAM and KMS audit report.

    The report is printed only if every API call succeeded. Any failure
    aborts the scan with exit status 1 and no report.
    """
    configure_logging(verbose)

    orchestrator = Orchestrator([
        IdentityCollector(max_workers=max_workers),
        KeyCollector(max_workers=max_workers),
        PolicyCrossReferencer(),
    ])

    try:
        session = create_session(profile, region)
        tree = orchestrator.run(session)
    except PawsError as e:
        click.echo(f"{Fore.RED}Error: {e}{Style.RESET_ALL}", err=True)
        sys.exit(1)

    if output == 'json':
        click.echo(render_json(tree))
    else:
        for table in create_summary_tables(tree):
            click.echo(table)
            click.echo()


@main.command('version')
def version():
    """Display the version of PAWS."""
    click.echo(f"PAWS v{__version__}")


@main.command('docs')
def docs():
    """Display the layout of the audit report."""
    doc_text = """
    PAWS Report Layout
    ==================

    audit.iam.users[]
    • arn, id, name, path, createdAt
    • mfaType            - none, virtual (virtual MFA device ARN) or hardware (any other serial)
    • password.createdAt - when the console password was created, null for API-only users
    • password.lastUsed  - last console sign-in, null for API-only users
    • keys[]             - id, createdAt, status (Active/Inactive),
                           lastUsed {date, region, serviceName} or null if never used

    audit.kms.keys[]
    • arn, id, enabled, state, rotationEnabled, keyManager, description
    • policy.name        - name of the key policy (always "default" today)
    • policy.statements[] in document order:
        sid                            - statement id, "" if absent
        actions                        - sorted list of actions
        bypassPolicyLockoutSafetyCheck - true if a Bool condition sets
                                         kms:BypassPolicyLockoutSafetyCheck
        multiFactorAuthAge             - aws:MultiFactorAuthAge in seconds, or null

    audit.kms.policyReferences[]
    • IAM customer managed policies, attached to at least one principal,
      whose document mentions KMS actions. This is a triage list, not a
      permission analysis.

    ERRORS
    ------
    Any failed API call or malformed policy document aborts the scan with
    exit status 1. A user without a console password is not an error.

    REQUIRED PERMISSIONS
    --------------------
    iam:ListUsers, iam:ListMFADevices, iam:GetLoginProfile, iam:ListAccessKeys,
    iam:GetAccessKeyLastUsed, iam:ListPolicies, iam:GetPolicyVersion,
    kms:ListKeys, kms:DescribeKey, kms:GetKeyRotationStatus,
    kms:ListKeyPolicies, kms:GetKeyPolicy
    """
    click.echo(doc_text)


if __name__ == '__main__':
    main()
