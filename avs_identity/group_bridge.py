"""
Bridging directory groups into the CloudAdmins administrative group.
"""

import logging
from typing import List, Optional

from avs_identity.errors import AmbiguousMatchError, NotFoundError
from avs_identity.logging_setup import security_logger
from avs_identity.models import GroupRecord
from avs_identity.registrar import IdentitySourceRegistrar
from avs_identity.sso.base import SSOClientBase

logger = logging.getLogger(__name__)


class GroupBridge:
    """
    Adds external directory groups to, and removes them from, the
    administrative group in the local SSO domain.

    When no domain is given the group is searched for in every external
    domain and must be found in exactly one of them.
    """

    def __init__(self, sso_client: SSOClientBase, registrar: IdentitySourceRegistrar):
        self.sso = sso_client
        self.registrar = registrar
        self.admin_group = sso_client.admin_group_record

    def locate(self, group_name: str, domain: Optional[str] = None) -> GroupRecord:
        """
        Find a group in the external identity sources.

        Raises:
            NotFoundError: If the group (or the given domain) does not exist
            AmbiguousMatchError: If the group exists in several domains
            UnsupportedOperationError: If the domain is a system domain
        """
        if not group_name or not group_name.strip():
            raise NotFoundError("A group name is required")
        group_name = group_name.strip()

        if domain:
            self.registrar.check_not_protected(domain)
            source = self.registrar.get_source(domain)
            group = self.sso.find_group(group_name, source.domain_name)
            if group is None:
                raise NotFoundError(f"Group '{group_name}' not found in domain '{source.domain_name}'")
            return group

        sources = self.registrar.list_sources()
        if not sources:
            raise NotFoundError(f"No external identity sources are configured to search for group '{group_name}'")

        matches = []
        for source in sources:
            group = self.sso.find_group(group_name, source.domain_name)
            if group is not None:
                logger.debug(f"Found group {group}")
                matches.append(group)

        if not matches:
            searched = ', '.join(s.domain_name for s in sources)
            raise NotFoundError(f"Group '{group_name}' not found in any external domain ({searched})")
        if len(matches) > 1:
            found_in = ', '.join(g.domain for g in matches)
            raise AmbiguousMatchError(
                f"Group '{group_name}' exists in multiple domains ({found_in}); "
                f"specify the domain to use")

        return matches[0]

    def _is_member(self, group: GroupRecord, members: List[GroupRecord]) -> bool:
        return any(group.matches(member) for member in members)

    def add(self, group_name: str, domain: Optional[str] = None) -> GroupRecord:
        """
        Add a group to the administrative group.

        Already being a member counts as success and makes no change.

        Returns:
            The group that is now a member
        """
        group = self.locate(group_name, domain)

        members = self.sso.list_group_members(self.admin_group)
        if self._is_member(group, members):
            logger.info(f"Group {group} is already a member of {self.admin_group}")
            return group

        try:
            self.sso.add_to_group(group, self.admin_group)
        except Exception:
            security_logger.log_group_operation('add', str(group), str(self.admin_group), False)
            raise

        security_logger.log_group_operation('add', str(group), str(self.admin_group), True)
        logger.info(f"Added group {group} to {self.admin_group}")
        return group

    def remove(self, group_name: str, domain: Optional[str] = None) -> bool:
        """
        Remove a group from the administrative group.

        A failed removal call is logged with the current membership and
        reported as False instead of raising.

        Returns:
            True if the group is no longer a member
        """
        group = self.locate(group_name, domain)

        members = self.sso.list_group_members(self.admin_group)
        if not self._is_member(group, members):
            logger.info(f"Group {group} is not a member of {self.admin_group}; nothing to remove")
            return True

        try:
            self.sso.remove_from_group(group, self.admin_group)
        except Exception as e:
            security_logger.log_group_operation('remove', str(group), str(self.admin_group), False)
            logger.error(f"Failed to remove group {group} from {self.admin_group}: {e}")
            self._dump_membership()
            return False

        security_logger.log_group_operation('remove', str(group), str(self.admin_group), True)
        logger.info(f"Removed group {group} from {self.admin_group}")
        return True

    def _dump_membership(self) -> None:
        try:
            members = self.sso.list_group_members(self.admin_group)
        except Exception as e:
            logger.error(f"Could not list members of {self.admin_group}: {e}")
            return

        logger.error(f"Current members of {self.admin_group}:")
        for member in members:
            logger.error(f"  {member}")
        if not members:
            logger.error("  (none)")
