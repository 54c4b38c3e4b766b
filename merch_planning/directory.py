"""
User Directory Module

Resolves which users hold a role. The workflow engine only needs the
``resolve_users_by_role(role) -> [user_id]`` capability; UserDirectory is
the storage-backed default.
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional, Union

from .storage import StorageInterface
from .definitions import UserRole


RoleResolver = Callable[[str], List[str]]


class UserDirectory:
    """Active users read from the ``users`` table"""

    def __init__(self, storage: StorageInterface, table: str = "users"):
        self.storage = storage
        self.table = table

    def add_user(self, user_id: str, role: Union[UserRole, str], name: Optional[str] = None,
                 email: Optional[str] = None, status: str = "ACTIVE") -> None:
        now = datetime.now(timezone.utc).isoformat()
        self.storage.save(self.table, user_id, {
            'id': user_id,
            'created_at': now,
            'updated_at': now,
            'name': name,
            'email': email,
            'role': role.value if isinstance(role, UserRole) else role,
            'status': status
        })

    def users_with_role(self, role: Optional[str]) -> List[str]:
        """IDs of active users holding ``role``, in a stable order"""
        if not role:
            return []
        rows = self.storage.find(self.table, {'role': role, 'status': 'ACTIVE'})
        return sorted(row['id'] for row in rows)
