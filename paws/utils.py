"""
Utility functions for PAWS
"""
import json
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager

from botocore.exceptions import BotoCoreError, ClientError
from prettytable import PrettyTable

from .exceptions import ServiceError


@contextmanager
def api_call(service, operation, entity=None):
    """
    Turn botocore failures inside the block into ServiceError.

    Args:
        service: AWS service name
        operation: API operation being called
        entity: User, key or policy being processed

    Raises:
        ServiceError: If the wrapped call raised a botocore error
    """
    try:
        yield
    except (ClientError, BotoCoreError) as e:
        raise ServiceError(service, operation, entity=entity, cause=e) from e


def error_code(error):
    """Return the AWS error code of a ClientError"""
    return error.response.get('Error', {}).get('Code', '')


def paginate(client, operation, **kwargs):
    """
    Yield every page of a paginated API call.

    Args:
        client: Boto3 client
        operation: Paginated operation name, e.g. 'list_users'
        **kwargs: Request parameters

    Returns:
        generator: Response pages
    """
    paginator = client.get_paginator(operation)
    return paginator.paginate(**kwargs)


def ordered_map(func, items, max_workers=1):
    """
    Apply func to every item, optionally on a bounded thread pool.

    Results are returned in the order of items, regardless of which worker
    finished first. The first exception raised by func propagates and items
    that have not started yet are cancelled.

    Args:
        func: Callable taking one item
        items: Sequence of items
        max_workers: Upper bound on concurrent calls

    Returns:
        list: func(item) for every item, in input order
    """
    items = list(items)
    if max_workers <= 1 or len(items) <= 1:
        return [func(item) for item in items]
    executor = ThreadPoolExecutor(max_workers=min(max_workers, len(items)))
    futures = [executor.submit(func, item) for item in items]
    try:
        for future in as_completed(futures):
            future.result()
    except Exception:
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    executor.shutdown()
    return [future.result() for future in futures]


def render_json(tree):
    """
    Serialize an audit tree.

    Args:
        tree: AuditTree

    Returns:
        str: JSON with 2-space indentation
    """
    return json.dumps(tree.to_dict(), indent=2, sort_keys=False, ensure_ascii=False)


def create_pretty_table(title, headers, rows):
    """
    Create a prettytable for displaying results.

    Args:
        title: Table title
        headers: Column headers
        rows: Row data

    Returns:
        PrettyTable: Formatted table
    """
    table = PrettyTable()
    table.title = title
    table.field_names = headers
    for row in rows:
        table.add_row(row)
    table.align = 'l'  # Left-align text
    return table


def create_summary_tables(tree):
    """
    Build the human readable view of an audit tree.

    Args:
        tree: AuditTree

    Returns:
        list: PrettyTable objects for users, keys and policy references
    """
    tables = []
    iam = tree.audit.iam
    kms = tree.audit.kms

    if iam is not None:
        rows = []
        for user in iam.users:
            password = 'yes' if user.password.created_at else 'no'
            active_keys = sum(1 for key in user.keys if key.status == 'Active')
            rows.append([user.name, user.mfa_type.value, password, f"{active_keys}/{len(user.keys)}"])
        tables.append(create_pretty_table(
            "IAM Users",
            ["User", "MFA", "Password", "Active Keys"],
            rows
        ))

    if kms is not None:
        rows = []
        for key in kms.keys:
            bypass = any(s.bypass_policy_lockout_safety_check for s in key.policy.statements)
            rows.append([
                key.id,
                key.state.value,
                'enabled' if key.rotation_enabled else 'disabled',
                len(key.policy.statements),
                'yes' if bypass else 'no',
            ])
        tables.append(create_pretty_table(
            "KMS Keys",
            ["Key ID", "State", "Rotation", "Statements", "Lockout Bypass"],
            rows
        ))

        rows = [[m.policy_name, ', '.join(m.matched_actions)] for m in kms.policy_references]
        tables.append(create_pretty_table(
            "IAM Policies Referencing KMS",
            ["Policy", "Matched Actions"],
            rows
        ))

    return tables
