#!/usr/bin/env python3
"""
Unit tests for identity source records and parameter validation.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from avs_identity.errors import MalformedInputError
from avs_identity.models import (
    Credential,
    GroupRecord,
    IdentitySourceRecord,
    IdentitySourceSpec,
    normalize_domain,
)
from avs_identity.url_validator import validate_ldap_url


def make_spec(**overrides):
    params = {
        'name': 'Example AD',
        'domain_name': 'example.local',
        'domain_alias': 'EXAMPLE',
        'primary_url': validate_ldap_url('ldaps://dc1.example.local:636'),
        'base_dn_users': 'OU=Users,DC=example,DC=local',
        'base_dn_groups': 'OU=Groups,DC=example,DC=local',
        'credential': Credential('svc-ldap@example.local', 'S3cret!'),
    }
    params.update(overrides)
    return IdentitySourceSpec(**params)


class TestIdentitySourceSpec(unittest.TestCase):
    """Test cases for IdentitySourceSpec validation."""

    def test_valid_spec(self):
        spec = make_spec(secondary_url=validate_ldap_url('ldaps://dc2.example.local:636'))

        spec.validate()
        self.assertTrue(spec.is_secure)
        self.assertEqual(len(spec.urls), 2)

    def test_domain_name_is_trimmed(self):
        spec = make_spec(domain_name='  example.local ')

        self.assertEqual(spec.domain_name, 'example.local')

    def test_single_label_domain_rejected(self):
        with self.assertRaises(MalformedInputError) as context:
            make_spec(domain_name='example').validate()

        self.assertIn("Domain name 'example'", str(context.exception))

    def test_invalid_dn_rejected(self):
        with self.assertRaises(MalformedInputError) as context:
            make_spec(base_dn_users='OU Users').validate()

        self.assertIn('BaseDNUsers', str(context.exception))

    def test_all_problems_reported_together(self):
        spec = make_spec(
            domain_name='bad domain',
            base_dn_groups='',
            credential=Credential('svc-ldap', ''),
        )

        with self.assertRaises(MalformedInputError) as context:
            spec.validate()

        message = str(context.exception)
        self.assertIn('Domain name', message)
        self.assertIn('BaseDNGroups is required', message)
        self.assertIn('Credential password is required', message)

    def test_secondary_scheme_must_match_primary(self):
        spec = make_spec(secondary_url=validate_ldap_url('ldap://dc2.example.local:389'))

        with self.assertRaises(MalformedInputError) as context:
            spec.validate()

        self.assertIn('does not match', str(context.exception))

    def test_repr_hides_password(self):
        self.assertNotIn('S3cret!', repr(make_spec()))


class TestRecords(unittest.TestCase):
    """Test cases for the record types."""

    def test_credential_repr_hides_password(self):
        credential = Credential('svc-ldap', 'S3cret!')

        self.assertNotIn('S3cret!', repr(credential))
        self.assertEqual(credential.password, 'S3cret!')

    def test_group_matching_ignores_case(self):
        group = GroupRecord('AVS-Admins', 'Example.Local')

        self.assertTrue(group.matches(GroupRecord('avs-admins', 'example.local ')))
        self.assertFalse(group.matches(GroupRecord('avs-admins', 'other.local')))
        self.assertEqual(str(group), 'AVS-Admins@Example.Local')

    def test_source_urls(self):
        source = IdentitySourceRecord('Example', 'example.local', primary_url='ldaps://dc1.example.local:636')

        self.assertEqual(source.urls, ['ldaps://dc1.example.local:636'])
        self.assertEqual(source.type, 'ActiveDirectory')

    def test_normalize_domain(self):
        self.assertEqual(normalize_domain(' Example.LOCAL '), 'example.local')
        self.assertEqual(normalize_domain(None), '')


if __name__ == '__main__':
    unittest.main()
