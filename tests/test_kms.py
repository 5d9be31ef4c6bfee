"""
Tests for the KMS collector
"""
import json
import unittest
from unittest.mock import Mock

import boto3
from botocore.exceptions import ClientError
from moto import mock_aws

from paws.exceptions import MalformedPolicyError, ServiceError
from paws.kms import KeyCollector, build_key, get_key_policy, get_rotation_status
from paws.tree import AuditTree, KeyState

TWO_STATEMENT_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Sid": "AllowRoot",
            "Effect": "Allow",
            "Principal": {"AWS": "arn:aws:iam::123456789012:root"},
            "Action": ["kms:*"],
            "Resource": "*"
        },
        {
            "Sid": "DenyBypass",
            "Effect": "Deny",
            "Principal": {"AWS": "*"},
            "Action": "kms:PutKeyPolicy",
            "Resource": "*",
            "Condition": {"Bool": {"kms:BypassPolicyLockoutSafetyCheck": "true"}}
        }
    ]
}


def _paginator(*pages):
    paginator = Mock()
    paginator.paginate.return_value = list(pages)
    return paginator


def _stub_client(policy_text, policy_names=('default',)):
    paginators = {
        'list_keys': _paginator({'Keys': [{'KeyId': 'key-1', 'KeyArn': 'arn:aws:kms:us-east-1:123456789012:key/key-1'}]}),
        'list_key_policies': _paginator({'PolicyNames': list(policy_names), 'Truncated': False}),
    }
    kms = Mock()
    kms.get_paginator.side_effect = lambda operation: paginators[operation]
    kms.describe_key.return_value = {'KeyMetadata': {
        'KeyId': 'key-1',
        'Arn': 'arn:aws:kms:us-east-1:123456789012:key/key-1',
        'Enabled': True,
        'KeyState': 'Enabled',
        'KeyManager': 'CUSTOMER',
    }}
    kms.get_key_rotation_status.return_value = {'KeyRotationEnabled': False}
    kms.get_key_policy.return_value = {'Policy': policy_text, 'PolicyName': 'default'}
    return kms


class TestKeyCollectorMoto(unittest.TestCase):

    @mock_aws
    def test_key_policy_statements_in_order(self):
        kms = boto3.client('kms', region_name='us-east-1')
        key_id = kms.create_key(
            Policy=json.dumps(TWO_STATEMENT_POLICY),
            Description='audit test key'
        )['KeyMetadata']['KeyId']

        policy = get_key_policy(kms, key_id)

        self.assertEqual(policy.name, 'default')
        self.assertEqual([s.sid for s in policy.statements], ['AllowRoot', 'DenyBypass'])
        self.assertFalse(policy.statements[0].bypass_policy_lockout_safety_check)
        self.assertTrue(policy.statements[1].bypass_policy_lockout_safety_check)
        self.assertEqual(policy.statements[0].actions, frozenset(['kms:*']))
        self.assertEqual(policy.statements[1].actions, frozenset(['kms:PutKeyPolicy']))

    @mock_aws
    def test_rotation_status(self):
        kms = boto3.client('kms', region_name='us-east-1')
        rotated = kms.create_key()['KeyMetadata']['KeyId']
        plain = kms.create_key()['KeyMetadata']['KeyId']
        kms.enable_key_rotation(KeyId=rotated)

        self.assertTrue(get_rotation_status(kms, rotated))
        self.assertFalse(get_rotation_status(kms, plain))

    @mock_aws
    def test_collects_all_keys(self):
        kms = boto3.client('kms', region_name='us-east-1')
        created = []
        for i in range(3):
            created.append(kms.create_key(
                Policy=json.dumps(TWO_STATEMENT_POLICY),
                Description=f"key {i}"
            )['KeyMetadata']['KeyId'])
        kms.enable_key_rotation(KeyId=created[0])
        kms.disable_key(KeyId=created[2])

        session = boto3.Session(region_name='us-east-1')
        data = KeyCollector(max_workers=4).populate(session, AuditTree())

        listed = [key['KeyId'] for key in kms.list_keys()['Keys']]
        self.assertEqual([key.id for key in data.keys], listed)

        keys = {key.id: key for key in data.keys}
        self.assertEqual(set(keys), set(created))
        self.assertTrue(keys[created[0]].rotation_enabled)
        self.assertFalse(keys[created[1]].rotation_enabled)
        self.assertTrue(keys[created[1]].enabled)
        self.assertEqual(keys[created[1]].state, KeyState.ENABLED)
        self.assertFalse(keys[created[2]].enabled)
        self.assertEqual(keys[created[2]].state, KeyState.DISABLED)
        self.assertEqual(keys[created[0]].key_manager, 'CUSTOMER')
        self.assertEqual(keys[created[1]].description, 'key 1')
        for key in data.keys:
            self.assertEqual(len(key.policy.statements), 2)
            self.assertTrue(key.arn.endswith(key.id))
        self.assertEqual(data.policy_references, ())

    @mock_aws
    def test_no_keys(self):
        session = boto3.Session(region_name='us-east-1')
        data = KeyCollector().populate(session, AuditTree())
        self.assertEqual(data.keys, ())


class TestKeyCollectorStubbed(unittest.TestCase):

    def test_serialized_key(self):
        kms = _stub_client(json.dumps(TWO_STATEMENT_POLICY))
        session = Mock()
        session.client.return_value = kms

        data = KeyCollector(max_workers=1).populate(session, AuditTree())

        key = data.to_dict()['keys'][0]
        self.assertEqual(key['id'], 'key-1')
        self.assertEqual(key['state'], 'Enabled')
        self.assertTrue(key['enabled'])
        self.assertFalse(key['rotationEnabled'])
        self.assertEqual(key['policy']['name'], 'default')
        self.assertEqual(key['policy']['statements'][0], {
            'sid': 'AllowRoot',
            'actions': ['kms:*'],
            'bypassPolicyLockoutSafetyCheck': False,
            'multiFactorAuthAge': None,
        })
        self.assertTrue(key['policy']['statements'][1]['bypassPolicyLockoutSafetyCheck'])
        kms.get_key_policy.assert_called_once_with(KeyId='key-1', PolicyName='default')

    def test_first_policy_name_is_used(self):
        kms = _stub_client(json.dumps(TWO_STATEMENT_POLICY), policy_names=('default', 'other'))
        policy = get_key_policy(kms, 'key-1')
        self.assertEqual(policy.name, 'default')

    def test_no_policy_is_fatal(self):
        kms = _stub_client(json.dumps(TWO_STATEMENT_POLICY), policy_names=())
        with self.assertRaises(ServiceError) as ctx:
            get_key_policy(kms, 'key-1')
        self.assertEqual(ctx.exception.operation, 'ListKeyPolicies')

    def test_malformed_policy_is_fatal(self):
        kms = _stub_client('{"Statement": [ {"Sid": "x",')
        with self.assertRaises(MalformedPolicyError) as ctx:
            build_key(kms, {'KeyId': 'key-1', 'KeyArn': 'arn:aws:kms:us-east-1:123456789012:key/key-1'})
        self.assertEqual(ctx.exception.entity, 'key-1')

    def test_api_error_is_fatal(self):
        kms = _stub_client(json.dumps(TWO_STATEMENT_POLICY))
        kms.get_key_rotation_status.side_effect = ClientError(
            {'Error': {'Code': 'KMSInvalidStateException', 'Message': 'pending deletion'}},
            'GetKeyRotationStatus'
        )
        session = Mock()
        session.client.return_value = kms

        with self.assertRaises(ServiceError) as ctx:
            KeyCollector(max_workers=1).populate(session, AuditTree())

        self.assertEqual(ctx.exception.service, 'kms')
        self.assertEqual(ctx.exception.operation, 'GetKeyRotationStatus')
        self.assertEqual(ctx.exception.entity, 'key-1')
        self.assertIn('GetKeyRotationStatus', str(ctx.exception))

    def test_unknown_key_state_is_fatal(self):
        kms = _stub_client(json.dumps(TWO_STATEMENT_POLICY))
        kms.describe_key.return_value['KeyMetadata']['KeyState'] = 'Melting'
        with self.assertRaises(ServiceError):
            build_key(kms, {'KeyId': 'key-1'})


if __name__ == '__main__':
    unittest.main()
