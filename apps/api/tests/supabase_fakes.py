from uuid import uuid4

from family_health.supabase import AuthContext


class FakeSupabase:
    """Records every PostgREST call and answers from per-table queues.

    A queued exception instance is raised instead of returned.
    """

    base_url = "http://localhost:54321"
    anon_key = "test-anon-key"

    def __init__(self, *, select_queue=None, insert_queue=None, update_queue=None, delete_queue=None):
        self.select_queue = self._copy(select_queue)
        self.insert_queue = self._copy(insert_queue)
        self.update_queue = self._copy(update_queue)
        self.delete_queue = self._copy(delete_queue)
        self.calls = []

    @staticmethod
    def _copy(queue):
        return {table: list(items) for table, items in (queue or {}).items()}

    @staticmethod
    def _next(queue, table, default):
        items = queue.get(table)
        if not items:
            return default
        item = items.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def select(self, table, params):
        self.calls.append(("select", table, params))
        return self._next(self.select_queue, table, [])

    async def insert(self, table, payload, *, params=None):
        self.calls.append(("insert", table, payload, params))
        return self._next(self.insert_queue, table, [{"id": str(uuid4()), **payload}])

    async def upsert(self, table, payload, *, on_conflict):
        self.calls.append(("upsert", table, payload, on_conflict))
        return self._next(self.insert_queue, table, [{"id": str(uuid4()), **payload}])

    async def update(self, table, payload, params):
        self.calls.append(("update", table, payload, params))
        return self._next(self.update_queue, table, [])

    async def delete(self, table, params):
        self.calls.append(("delete", table, params))
        return self._next(self.delete_queue, table, [])

    async def rpc(self, fn, payload=None):
        self.calls.append(("rpc", fn, payload))
        return None

    def calls_for(self, method, table=None):
        return [call for call in self.calls if call[0] == method and (table is None or call[1] == table)]


def make_auth(supabase, *, role="admin", family_id=None, member_id=None, user_id=None) -> AuthContext:
    return AuthContext(
        user_id=user_id or str(uuid4()),
        user_email="parent@example.com",
        family_id=family_id or str(uuid4()),
        member_id=member_id or str(uuid4()),
        role=role,
        access_token="test-token",
        supabase=supabase,
        memberships=[],
    )


def member_row(auth: AuthContext, **overrides):
    row = {
        "id": str(uuid4()),
        "family_id": auth.family_id,
        "user_id": None,
        "name": "Alya",
        "role": "child",
        "avatar_url": None,
        "birth_date": "2024-01-15",
    }
    row.update(overrides)
    return row
