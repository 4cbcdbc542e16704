"""Group memberships in a regular user's ``GROUPS`` table.

A group exists while at least one row names it; removing its last member
removes the group. Group names are identifiers and are stored uppercased.
"""

import logging

from sqlalchemy import text
from sqlalchemy.engine import Connection

from .auth import operation
from .contacts import check_contact_ids
from .errors import AlreadyExists, NotFoundError, ValidationError
from .provisioning import CONTACTS, GROUPS
from .schemas import Role
from .validators import validate_identifier

logger = logging.getLogger(__name__)

GROUP_NAME_LENGTH = 40


def check_group_name(name: str, operation: str) -> str:
    """Return ``name`` uppercased, or raise ``ValidationError``."""
    if not validate_identifier(name):
        raise ValidationError(
            "group names can only contain ASCII alphanumeric characters and underscores",
            operation,
        )
    if len(name) > GROUP_NAME_LENGTH:
        raise ValidationError(
            f"group names cannot be longer than {GROUP_NAME_LENGTH} characters", operation
        )
    return name.upper()


class GroupOperations:
    """Group operations of :class:`~contactdb.session.SessionManager`."""

    def _group_names(self, conn: Connection) -> list[str]:
        schema = self.guard.current_user()
        return list(
            conn.execute(text(f"SELECT DISTINCT NAME FROM {schema}.{GROUPS} ORDER BY NAME")).scalars()
        )

    @operation(role=Role.REGULAR)
    def list_groups(self) -> list[str]:
        """Return the caller's group names, sorted."""
        with self.transaction() as conn:
            return self._group_names(conn)

    @operation(role=Role.REGULAR)
    def add_to_group(self, name: str, *contact_ids: int) -> int:
        """
        Add contacts to a group, creating the group if needed.

        Ids of missing contacts and of contacts already in the group are
        skipped with a warning.

        Returns:
            int: Number of memberships added.

        Raises:
            NotFoundError: If no given contact exists.
            AlreadyExists: If every existing contact is already a member.
        """
        group = check_group_name(name, "add_to_group")
        ids = check_contact_ids(contact_ids, "add_to_group")
        schema = self.guard.current_user()

        added = skipped = 0
        with self.transaction() as conn:
            for contact_id in ids:
                found = conn.execute(
                    text(f"SELECT COUNT(*) FROM {schema}.{CONTACTS} WHERE ID = :id"),
                    {"id": contact_id},
                ).scalar_one()
                if not found:
                    logger.warning("add_to_group() : contact %d doesn't exist; skipped", contact_id)
                    continue

                member = conn.execute(
                    text(
                        f"SELECT COUNT(*) FROM {schema}.{GROUPS} "
                        "WHERE NAME = :name AND CONTACT_ID = :id"
                    ),
                    {"name": group, "id": contact_id},
                ).scalar_one()
                if member:
                    logger.warning(
                        "add_to_group() : contact %d is already in group '%s'; skipped",
                        contact_id,
                        group,
                    )
                    skipped += 1
                    continue

                conn.execute(
                    text(f"INSERT INTO {schema}.{GROUPS} (NAME, CONTACT_ID) VALUES (:name, :id)"),
                    {"name": group, "id": contact_id},
                )
                added += 1

            if not added:
                if skipped:
                    raise AlreadyExists(
                        f"every given contact is already in group '{group}'", "add_to_group"
                    )
                raise NotFoundError("no contacts affected", "add_to_group")

        logger.info("add_to_group() : %d contact(s) added to group '%s'", added, group)
        return added

    @operation(role=Role.REGULAR)
    def remove_from_group(self, name: str, *contact_ids: int) -> int:
        """
        Remove contacts from a group.

        Returns:
            int: Number of memberships removed.

        Raises:
            NotFoundError: If the group doesn't exist or none of the
                contacts is a member.
        """
        group = check_group_name(name, "remove_from_group")
        ids = check_contact_ids(contact_ids, "remove_from_group")
        schema = self.guard.current_user()

        with self.transaction() as conn:
            if group not in self._group_names(conn):
                raise NotFoundError(
                    f"group '{group}' doesn't exist; no contacts affected", "remove_from_group"
                )
            removed = sum(
                conn.execute(
                    text(f"DELETE FROM {schema}.{GROUPS} WHERE NAME = :name AND CONTACT_ID = :id"),
                    {"name": group, "id": contact_id},
                ).rowcount
                for contact_id in ids
            )
            if not removed:
                raise NotFoundError("no contacts affected", "remove_from_group")

        logger.info("remove_from_group() : %d contact(s) removed from group '%s'", removed, group)
        return removed

    @operation(role=Role.REGULAR)
    def delete_group(self, name: str) -> int:
        """Delete a group; its contacts are kept."""
        group = check_group_name(name, "delete_group")
        schema = self.guard.current_user()

        with self.transaction() as conn:
            if group not in self._group_names(conn):
                raise NotFoundError(f"group '{group}' doesn't exist", "delete_group")
            removed = conn.execute(
                text(f"DELETE FROM {schema}.{GROUPS} WHERE NAME = :name"), {"name": group}
            ).rowcount

        logger.info("delete_group() : group '%s' successfully deleted", group)
        return removed

    @operation(role=Role.REGULAR)
    def rename_group(self, old_name: str, new_name: str) -> int:
        """
        Rename a group.

        Raises:
            NotFoundError: If ``old_name`` doesn't exist.
            AlreadyExists: If ``new_name`` already exists.
        """
        old = check_group_name(old_name, "rename_group")
        new = check_group_name(new_name, "rename_group")
        if old == new:
            raise ValidationError("new group name must differ from the old one", "rename_group")
        schema = self.guard.current_user()

        with self.transaction() as conn:
            names = self._group_names(conn)
            if old not in names:
                raise NotFoundError(f"group '{old}' doesn't exist", "rename_group")
            if new in names:
                raise AlreadyExists(f"group '{new}' already exists", "rename_group")
            renamed = conn.execute(
                text(f"UPDATE {schema}.{GROUPS} SET NAME = :new WHERE NAME = :old"),
                {"new": new, "old": old},
            ).rowcount

        logger.info("rename_group() : group '%s' renamed to '%s'", old, new)
        return renamed
