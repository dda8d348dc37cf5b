"""
SSO client integrations.

Each module in this package provides an SSOClientBase subclass; the
orchestrator loads the one named by the sso.module configuration key.
"""
