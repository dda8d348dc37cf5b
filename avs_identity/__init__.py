"""
AVS Identity - Provision and diagnose external LDAP/LDAPS identity sources on vCenter SSO.

This package validates directory connection parameters, acquires certificates,
registers Active Directory identity sources with the single-sign-on subsystem,
bridges directory groups into CloudAdmins and runs network diagnostics from
the management endpoint.
"""

__version__ = "1.0.0"
__author__ = "AVS Identity Team"
