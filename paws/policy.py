"""
Policy statement extraction.

Policy documents are parsed as JSON and projected field by field onto
PolicyStatement records. Statement order is the document order.
"""
import json
from urllib.parse import unquote

from .exceptions import MalformedPolicyError
from .tree import PolicyStatement

BYPASS_LOCKOUT_KEY = 'kms:bypasspolicylockoutsafetycheck'
MFA_AGE_KEY = 'aws:multifactorauthage'
BOOL_OPERATORS = ('bool', 'boolifexists')
NUMERIC_OPERATOR_PREFIX = 'numeric'


def parse_policy_document(text, entity=None):
    """
    Parse policy JSON text into a dictionary.

    Args:
        text: Policy document as returned by AWS
        entity: Key or policy the document belongs to, for error messages

    Returns:
        dict: Decoded policy document

    Raises:
        MalformedPolicyError: If the text is not a JSON object
    """
    try:
        document = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MalformedPolicyError("invalid JSON", entity=entity, cause=e) from e
    if not isinstance(document, dict):
        raise MalformedPolicyError("document is not an object", entity=entity)
    return document


def document_text(document):
    """
    Return the raw text of a policy document.

    IAM returns documents either URL-encoded or already decoded by botocore;
    KMS returns plain JSON text.

    Args:
        document: str or dict

    Returns:
        str: Document text
    """
    if isinstance(document, str):
        if document.lstrip().startswith('%7B'):
            return unquote(document)
        return document
    return json.dumps(document, sort_keys=False)


def normalize_actions(action):
    """
    Normalize an Action value to a set.

    Args:
        action: str, list of str, or None

    Returns:
        frozenset: Action identifiers
    """
    if action is None:
        return frozenset()
    if isinstance(action, str):
        return frozenset([action])
    return frozenset(action)


def _base_operator(operator):
    # ForAnyValue:Bool -> bool
    return operator.split(':')[-1].lower()


def _is_numeric_operator(operator):
    # NumericLessThanIfExists, ForAnyValue:NumericEquals
    return _base_operator(operator).startswith(NUMERIC_OPERATOR_PREFIX)


def _values(value):
    if isinstance(value, list):
        return value
    return [value]


def _is_true(value):
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() == 'true'


def bypass_lockout_check(condition):
    """
    Check whether a Condition block sets kms:BypassPolicyLockoutSafetyCheck.

    Args:
        condition: Condition mapping of a statement, may be None

    Returns:
        bool: True if a boolean operator maps the key to true
    """
    for operator, clauses in (condition or {}).items():
        if _base_operator(operator) not in BOOL_OPERATORS or not isinstance(clauses, dict):
            continue
        for key, value in clauses.items():
            if key.lower() == BYPASS_LOCKOUT_KEY and any(_is_true(v) for v in _values(value)):
                return True
    return False


def multi_factor_auth_age(condition, entity=None):
    """
    Read the aws:MultiFactorAuthAge condition value.

    Only numeric operators carry an age. The key under Null (the usual
    "deny without MFA" check) or any other operator is skipped.

    Args:
        condition: Condition mapping of a statement, may be None
        entity: Key or policy the statement belongs to, for error messages

    Returns:
        int or None: Age in seconds, None when the key is not used

    Raises:
        MalformedPolicyError: If a numeric operator maps the key to a non-integer
    """
    for operator, clauses in (condition or {}).items():
        if not _is_numeric_operator(operator) or not isinstance(clauses, dict):
            continue
        for key, value in clauses.items():
            if key.lower() != MFA_AGE_KEY:
                continue
            values = _values(value)
            if not values or isinstance(values[0], bool):
                raise MalformedPolicyError(f"invalid {key} value {value!r}", entity=entity)
            try:
                return int(str(values[0]).strip())
            except ValueError as e:
                raise MalformedPolicyError(f"invalid {key} value {value!r}", entity=entity, cause=e) from e
    return None


def extract_statement(statement, entity=None):
    """
    Project one raw statement onto a PolicyStatement.

    Args:
        statement: Statement mapping
        entity: Key or policy the statement belongs to, for error messages

    Returns:
        PolicyStatement
    """
    if not isinstance(statement, dict):
        raise MalformedPolicyError("statement is not an object", entity=entity)
    condition = statement.get('Condition')
    if condition is not None and not isinstance(condition, dict):
        raise MalformedPolicyError("Condition is not an object", entity=entity)
    sid = statement.get('Sid')
    try:
        actions = normalize_actions(statement.get('Action'))
    except TypeError as e:
        raise MalformedPolicyError("invalid Action", entity=entity, cause=e) from e
    return PolicyStatement(
        sid='' if sid is None else str(sid),
        actions=actions,
        bypass_policy_lockout_safety_check=bypass_lockout_check(condition),
        multi_factor_auth_age=multi_factor_auth_age(condition, entity=entity),
    )


def extract_statements(document, entity=None):
    """
    Extract all statements of a policy document.

    Args:
        document: Policy JSON text or an already decoded mapping
        entity: Key or policy the document belongs to, for error messages

    Returns:
        tuple: PolicyStatement records in document order

    Raises:
        MalformedPolicyError: If the document does not follow the policy grammar
    """
    if isinstance(document, str):
        document = parse_policy_document(document, entity=entity)
    elif not isinstance(document, dict):
        raise MalformedPolicyError("document is not an object", entity=entity)

    statements = document.get('Statement', [])
    if isinstance(statements, dict):
        statements = [statements]
    if not isinstance(statements, list):
        raise MalformedPolicyError("Statement is neither an object nor an array", entity=entity)

    return tuple(extract_statement(statement, entity=entity) for statement in statements)
