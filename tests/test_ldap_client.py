#!/usr/bin/env python3
"""
Unit tests for LDAP bind verification.

ldap3 Server and Connection objects are mocked.
"""

import os
import ssl
import sys
import unittest
from unittest.mock import Mock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap3 import Connection, MOCK_SYNC
from ldap3.core.exceptions import LDAPSocketOpenError

from avs_identity.errors import MalformedInputError, TransportError
from avs_identity.ldap_client import LDAPClient, LDAPConnectionError, verify_bind
from avs_identity.models import Credential
from avs_identity.url_validator import validate_ldap_url


SERVICE_DN = 'cn=svc-ldap,ou=Service,dc=example,dc=local'
USERS_DN = 'ou=Users,dc=example,dc=local'


def directory_connection(server, **kwargs):
    """Real ldap3 connection answered by an in-memory directory."""
    connection = Connection(server, client_strategy=MOCK_SYNC, **kwargs)
    connection.strategy.add_entry(SERVICE_DN, {'objectClass': ['person'], 'userPassword': 'pw'})
    connection.strategy.add_entry(USERS_DN, {'objectClass': ['organizationalUnit']})
    return connection


class TestLDAPClient(unittest.TestCase):
    """Test cases for LDAPClient."""

    def setUp(self):
        self.credential = Credential('svc-ldap@example.local', 'pw')
        self.ldaps = validate_ldap_url('ldaps://dc1.example.local:636')
        self.ldap = validate_ldap_url('ldap://dc1.example.local:389')

    @patch('avs_identity.ldap_client.Connection')
    @patch('avs_identity.ldap_client.Server')
    def test_plain_ldap_connect(self, mock_server, mock_connection):
        mock_connection.return_value.closed = False
        mock_connection.return_value.bind.return_value = True

        client = LDAPClient(self.ldap, self.credential)
        self.assertTrue(client.connect())

        mock_server.assert_called_once_with('dc1.example.local', port=389, use_ssl=False, tls=None,
                                            connect_timeout=10)
        self.assertEqual(mock_connection.call_args[1]['user'], 'svc-ldap@example.local')

    @patch('avs_identity.ldap_client.Tls')
    @patch('avs_identity.ldap_client.Connection')
    @patch('avs_identity.ldap_client.Server')
    def test_ldaps_trusts_supplied_certificates(self, mock_server, mock_connection, mock_tls):
        mock_connection.return_value.closed = False
        mock_connection.return_value.bind.return_value = True

        LDAPClient(self.ldaps, self.credential, ['PEM1', 'PEM2']).connect()

        mock_tls.assert_called_once_with(validate=ssl.CERT_REQUIRED, ca_certs_data='PEM1\nPEM2')
        self.assertTrue(mock_server.call_args[1]['use_ssl'])
        self.assertIs(mock_server.call_args[1]['tls'], mock_tls.return_value)

    def test_ldaps_without_certificates(self):
        with self.assertRaises(MalformedInputError):
            LDAPClient(self.ldaps, self.credential).connect()

    @patch('avs_identity.ldap_client.Connection')
    @patch('avs_identity.ldap_client.Server')
    def test_open_failure(self, mock_server, mock_connection):
        mock_connection.return_value.closed = True

        with self.assertRaises(LDAPConnectionError):
            LDAPClient(self.ldap, self.credential).connect()

        mock_connection.return_value.bind.assert_not_called()

    @patch('avs_identity.ldap_client.Connection')
    @patch('avs_identity.ldap_client.Server')
    def test_bind_failure(self, mock_server, mock_connection):
        mock_connection.return_value.closed = False
        mock_connection.return_value.bind.return_value = False
        mock_connection.return_value.result = {'description': 'invalidCredentials'}

        with self.assertRaises(LDAPConnectionError) as context:
            LDAPClient(self.ldap, self.credential).connect()

        self.assertIsInstance(context.exception, TransportError)
        self.assertIn('invalidCredentials', str(context.exception))
        mock_connection.return_value.unbind.assert_called_once()

    @patch('avs_identity.ldap_client.Connection')
    @patch('avs_identity.ldap_client.Server')
    def test_socket_error(self, mock_server, mock_connection):
        mock_connection.return_value.open.side_effect = LDAPSocketOpenError("unable to open socket")

        with self.assertRaises(LDAPConnectionError):
            LDAPClient(self.ldap, self.credential).connect()

    @patch('avs_identity.ldap_client.Connection')
    @patch('avs_identity.ldap_client.Server')
    def test_base_dn_exists(self, mock_server, mock_connection):
        conn = mock_connection.return_value
        conn.closed = False
        conn.bind.return_value = True
        conn.search.return_value = True
        conn.entries = [Mock()]

        client = LDAPClient(self.ldap, self.credential)
        client.connect()

        self.assertTrue(client.base_dn_exists('OU=Users,DC=example,DC=local'))
        conn.entries = []
        self.assertFalse(client.base_dn_exists('OU=Missing,DC=example,DC=local'))

    def test_base_dn_exists_requires_connection(self):
        with self.assertRaises(LDAPConnectionError):
            LDAPClient(self.ldap, self.credential).base_dn_exists('DC=example,DC=local')


class TestVerifyBind(unittest.TestCase):
    """Test cases for verify_bind."""

    def setUp(self):
        self.credential = Credential('svc-ldap@example.local', 'pw')
        self.server = validate_ldap_url('ldap://dc1.example.local:389')

    @patch('avs_identity.ldap_client.Connection')
    @patch('avs_identity.ldap_client.Server')
    def test_success_disconnects(self, mock_server, mock_connection):
        conn = mock_connection.return_value
        conn.closed = False
        conn.bind.return_value = True
        conn.search.return_value = True
        conn.entries = [Mock()]

        verify_bind(self.server, self.credential, ['OU=Users,DC=example,DC=local'])

        conn.unbind.assert_called_once()

    @patch('avs_identity.ldap_client.Connection')
    @patch('avs_identity.ldap_client.Server')
    def test_unreadable_base_dn(self, mock_server, mock_connection):
        conn = mock_connection.return_value
        conn.closed = False
        conn.bind.return_value = True
        conn.search.return_value = False
        conn.entries = []

        with self.assertRaises(MalformedInputError) as context:
            verify_bind(self.server, self.credential, ['OU=Users,DC=example,DC=local', 'OU=Gone,DC=example,DC=local'])

        self.assertIn('OU=Gone,DC=example,DC=local', str(context.exception))


class TestDirectoryBind(unittest.TestCase):
    """Bind against real ldap3 connections whose open() returns None."""

    def setUp(self):
        self.server = validate_ldap_url('ldap://dc1.example.local:389')

    @patch('avs_identity.ldap_client.Connection', side_effect=directory_connection)
    def test_connect_binds(self, mock_connection):
        client = LDAPClient(self.server, Credential(SERVICE_DN, 'pw'))

        self.assertTrue(client.connect())
        self.assertTrue(client.connection.bound)
        self.assertTrue(client.base_dn_exists(USERS_DN))
        self.assertFalse(client.base_dn_exists('ou=Gone,dc=example,dc=local'))
        client.disconnect()

    @patch('avs_identity.ldap_client.Connection', side_effect=directory_connection)
    def test_wrong_password(self, mock_connection):
        with self.assertRaises(LDAPConnectionError) as context:
            LDAPClient(self.server, Credential(SERVICE_DN, 'wrong')).connect()

        self.assertIn('invalidCredentials', str(context.exception))

    @patch('avs_identity.ldap_client.Connection', side_effect=directory_connection)
    def test_verify_bind(self, mock_connection):
        verify_bind(self.server, Credential(SERVICE_DN, 'pw'), [USERS_DN])

        with self.assertRaises(MalformedInputError):
            verify_bind(self.server, Credential(SERVICE_DN, 'pw'), [USERS_DN, 'ou=Gone,dc=example,dc=local'])


if __name__ == '__main__':
    unittest.main()
