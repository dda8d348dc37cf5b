"""
REST client for the SSO administration API.

Implements SSOClientBase against the JSON endpoints exposed below api_base:

    GET    identity-sources
    POST   identity-sources
    PUT    identity-sources/{domain}/certificates
    PUT    identity-sources/{domain}/credentials
    DELETE identity-sources/{domain}
    GET    groups?name=&domain=
    GET    groups/{domain}/{name}/members
    POST   groups/{domain}/{name}/members
    DELETE groups/{domain}/{name}/members/{member_domain}/{member_name}
"""

import logging
from typing import Dict, List, Any, Optional
from urllib.parse import quote

from avs_identity.models import (
    Credential,
    GroupRecord,
    IdentitySourceRecord,
    IdentitySourceSpec,
)
from .base import SSOClientBase, SSOAPIError

logger = logging.getLogger(__name__)


def _segment(value: str) -> str:
    return quote(value, safe='')


class RestSSOClient(SSOClientBase):
    """
    SSO client speaking the JSON administration API.
    """

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        logger.debug(f"Initialized REST SSO client for {self.host}")

    def _to_record(self, data: Dict[str, Any]) -> IdentitySourceRecord:
        return IdentitySourceRecord(
            name=data.get('name', ''),
            domain_name=data.get('domain_name', data.get('domain', '')),
            alias=data.get('alias', data.get('domain_alias')),
            primary_url=data.get('primary_url'),
            failover_url=data.get('failover_url'),
            type=data.get('type', data.get('server_type', 'ActiveDirectory')),
            username=data.get('username'),
        )

    def list_external_sources(self) -> List[IdentitySourceRecord]:
        response = self.request('GET', 'identity-sources')
        items = response if isinstance(response, list) else response.get('identity_sources', [])
        sources = [self._to_record(item) for item in items if item.get('external', True)]
        logger.debug(f"Retrieved {len(sources)} external identity sources from {self.host}")
        return sources

    def add_source(self, spec: IdentitySourceSpec, server_type: str,
                   certificates: Optional[List[str]] = None) -> IdentitySourceRecord:
        body = {
            'name': spec.name,
            'domain_name': spec.domain_name,
            'domain_alias': spec.domain_alias,
            'primary_url': spec.primary_url.authority,
            'failover_url': spec.secondary_url.authority if spec.secondary_url else None,
            'users_base_dn': spec.base_dn_users,
            'groups_base_dn': spec.base_dn_groups,
            'username': spec.credential.username,
            'password': spec.credential.password,
            'server_type': server_type,
            'certificates': certificates or [],
        }
        response = self.request('POST', 'identity-sources', body)
        logger.debug(f"Registered identity source {spec.domain_name} on {self.host}")
        if isinstance(response, dict) and response.get('domain_name'):
            return self._to_record(response)
        return IdentitySourceRecord(
            name=spec.name,
            domain_name=spec.domain_name,
            alias=spec.domain_alias,
            primary_url=body['primary_url'],
            failover_url=body['failover_url'],
            type=server_type,
            username=spec.credential.username,
        )

    def update_certificates(self, source: IdentitySourceRecord, certificates: List[str]) -> None:
        if not certificates:
            raise SSOAPIError(f"No certificates supplied for {source.domain_name}")
        self.request('PUT', f"identity-sources/{_segment(source.domain_name)}/certificates",
                     {'certificates': certificates})

    def update_credential(self, source: IdentitySourceRecord, credential: Credential) -> None:
        self.request('PUT', f"identity-sources/{_segment(source.domain_name)}/credentials",
                     {'username': credential.username, 'password': credential.password})

    def remove_source(self, source: IdentitySourceRecord) -> None:
        self.request('DELETE', f"identity-sources/{_segment(source.domain_name)}")

    def find_group(self, name: str, domain: str) -> Optional[GroupRecord]:
        response = self.request('GET', 'groups', params={'name': name, 'domain': domain})
        items = response if isinstance(response, list) else response.get('groups', [])
        for item in items:
            group = GroupRecord(item.get('name', ''), item.get('domain', domain))
            if group.matches(GroupRecord(name, domain)):
                return group
        return None

    def list_group_members(self, group: GroupRecord) -> List[GroupRecord]:
        response = self.request('GET', f"groups/{_segment(group.domain)}/{_segment(group.name)}/members")
        items = response if isinstance(response, list) else response.get('members', [])
        return [GroupRecord(item.get('name', ''), item.get('domain', '')) for item in items]

    def add_to_group(self, group: GroupRecord, target_group: GroupRecord) -> None:
        self.request('POST', f"groups/{_segment(target_group.domain)}/{_segment(target_group.name)}/members",
                     {'name': group.name, 'domain': group.domain})

    def remove_from_group(self, group: GroupRecord, target_group: GroupRecord) -> None:
        self.request('DELETE',
                     f"groups/{_segment(target_group.domain)}/{_segment(target_group.name)}"
                     f"/members/{_segment(group.domain)}/{_segment(group.name)}")
