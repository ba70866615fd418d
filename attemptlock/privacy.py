"""
Privacy provider: data-retention and erasure requests.

The lock table holds only a salted HMAC of the client fingerprint and is
removed when the attempt ends. The unlock log stores which supervisor
released which attempt; these are the only paths, besides deleting the
quiz, that remove rows from it.
"""

from typing import Any, Dict, Iterable, List

from .store import SessionStorage, table_prefix


class PrivacyProvider:
    def __init__(self, component: str, storage: SessionStorage):
        self.component = component
        self.storage = storage

    def metadata(self) -> Dict[str, Any]:
        prefix = self.storage.prefix or table_prefix(self.component)
        return {
            "component": self.component,
            "tables": {
                f"{prefix}_log": {
                    "unlockedby": "The user who allowed a connection change for a quiz attempt.",
                },
            },
            "summary": (
                "Stores a hash of the string identifying the client session. The hash is "
                "deleted when the attempt ends. Supervisor unlocks are logged."
            ),
        }

    def quiz_ids_for_user(self, user_id: int) -> List[int]:
        return self.storage.audit.quiz_ids_for_user(user_id)

    def export_user_data(self, user_id: int) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.storage.audit.entries_by_user(user_id)]

    def delete_for_quiz(self, quiz_id: int) -> int:
        return self.storage.audit.delete_for_quiz(quiz_id)

    def delete_for_users(self, user_ids: Iterable[int]) -> int:
        removed = 0
        with self.storage.atomic():
            for user_id in user_ids:
                removed += self.storage.audit.delete_for_user(user_id)
        return removed
