"""
テスト用のインメモリ Firebase

FakeFirestore: google.cloud.firestore.Client のうち使用する範囲
FakeRtdb     : firebase_admin.db.Reference のうち使用する範囲
"""

import copy
import itertools
from collections import OrderedDict


def _apply_value(current, value):
    """Increment などの変換を値に適用"""
    if type(value).__name__ == "Increment":
        return (current or 0) + value.value
    if isinstance(value, dict):
        base = dict(current) if isinstance(current, dict) else {}
        for k, v in value.items():
            base[k] = _apply_value(base.get(k), v)
        return base
    return value


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data)


class FakeDocumentRef:
    def __init__(self, client, collection, doc_id):
        self._client = client
        self.collection_name = collection
        self.id = doc_id

    @property
    def _store(self):
        return self._client.data.setdefault(self.collection_name, {})

    def get(self):
        return FakeSnapshot(self, copy.deepcopy(self._store.get(self.id)))

    def set(self, data, merge=False):
        self._client.check_fail("set", self)
        self._write_set(data, merge)

    def update(self, data):
        self._client.check_fail("update", self)
        self._write_update(data)

    def delete(self):
        self._client.check_fail("delete", self)
        self._store.pop(self.id, None)

    def _write_set(self, data, merge=False):
        if merge:
            self._store[self.id] = _apply_value(self._store.get(self.id), data)
        else:
            self._store[self.id] = _apply_value(None, data)

    def _write_update(self, data):
        if self.id not in self._store:
            raise KeyError(f"No document to update: {self.collection_name}/{self.id}")
        doc = self._store[self.id]
        for path, value in data.items():
            node = doc
            keys = path.split(".")
            for key in keys[:-1]:
                node = node.setdefault(key, {})
            node[keys[-1]] = _apply_value(node.get(keys[-1]), value)


class FakeAggregationResult:
    def __init__(self, value):
        self.value = value


class FakeCountQuery:
    def __init__(self, query):
        self._query = query

    def get(self):
        return [[FakeAggregationResult(len(self._query._results()))]]


class FakeQuery:
    def __init__(self, client, collection, filters=None, orders=None, limit=None, offset=0):
        self._client = client
        self._collection = collection
        self._filters = list(filters or [])
        self._orders = list(orders or [])
        self._limit = limit
        self._offset = offset

    def _copy(self, **kwargs):
        params = dict(filters=self._filters, orders=self._orders, limit=self._limit, offset=self._offset)
        params.update(kwargs)
        return FakeQuery(self._client, self._collection, **params)

    def where(self, field_path=None, op_string=None, value=None, filter=None):
        if filter is not None:
            field_path, op_string, value = filter.field_path, filter.op_string, filter.value
        return self._copy(filters=self._filters + [(field_path, op_string, value)])

    def order_by(self, field_path, direction="ASCENDING"):
        return self._copy(orders=self._orders + [(field_path, direction)])

    def limit(self, count):
        return self._copy(limit=count)

    def offset(self, count):
        return self._copy(offset=count)

    def count(self):
        return FakeCountQuery(self)

    def _results(self):
        docs = list(self._client.data.get(self._collection, {}).items())
        for field_path, op, value in self._filters:
            if op != "==":
                raise NotImplementedError(op)
            docs = [(doc_id, data) for doc_id, data in docs if data.get(field_path) == value]
        for field_path, direction in reversed(self._orders):
            docs = [(doc_id, data) for doc_id, data in docs if field_path in data]
            docs.sort(key=lambda item: item[1][field_path], reverse=(direction == "DESCENDING"))
        docs = docs[self._offset:]
        if self._limit is not None:
            docs = docs[:self._limit]
        return docs

    def stream(self):
        self._client.check_fail("read", self._collection)
        for doc_id, data in self._results():
            ref = FakeDocumentRef(self._client, self._collection, doc_id)
            yield FakeSnapshot(ref, copy.deepcopy(data))

    def get(self):
        return list(self.stream())


class FakeCollectionRef(FakeQuery):
    def __init__(self, client, name):
        super().__init__(client, name)

    def document(self, doc_id=None):
        if doc_id is None:
            doc_id = f"auto{next(self._client._ids):06d}"
        return FakeDocumentRef(self._client, self._collection, doc_id)


class FakeBatch:
    def __init__(self, client):
        self._client = client
        self.operations = []

    def set(self, ref, data, merge=False):
        self.operations.append(("set", ref, data, merge))

    def update(self, ref, data):
        self.operations.append(("update", ref, data, None))

    def delete(self, ref):
        self.operations.append(("delete", ref, None, None))

    def commit(self):
        self._client.commit_count += 1
        if self._client.fail_commits and self._client.commit_count in self._client.fail_commits:
            raise RuntimeError("commit failed")
        for op, ref, data, merge in self.operations:
            if op == "set":
                ref._write_set(data, merge)
            elif op == "update":
                ref._write_update(data)
            else:
                ref._store.pop(ref.id, None)
        self._client.committed_batches.append(list(self.operations))


class FakeFirestore:
    """コレクション名 → {doc_id: dict} を保持する Firestore クライアント"""

    def __init__(self):
        self.data = {}
        self.commit_count = 0
        self.fail_commits = set()
        self.fail_on = {}
        self.committed_batches = []
        self._ids = itertools.count(1)

    def collection(self, name):
        return FakeCollectionRef(self, name)

    def batch(self):
        return FakeBatch(self)

    def check_fail(self, op, target):
        name = target if isinstance(target, str) else target.collection_name
        if (op, name) in self.fail_on:
            raise self.fail_on[(op, name)]

    def docs(self, collection):
        return self.data.get(collection, {})


class FakeRtdbQuery:
    def __init__(self, ref, order_key=None):
        self._ref = ref
        self._order_key = order_key
        self._end_at = None
        self._limit_first = None

    def end_at(self, value):
        self._end_at = value
        return self

    def limit_to_first(self, count):
        self._limit_first = count
        return self

    def _sort_value(self, key, value):
        if self._order_key is None:
            return (0, key)
        child = value.get(self._order_key) if isinstance(value, dict) else None
        # 値を持たない子は先頭
        return (0, 0) if child is None else (1, child)

    def get(self):
        node = self._ref.get()
        if not isinstance(node, dict):
            return OrderedDict()
        items = sorted(node.items(), key=lambda kv: (self._sort_value(*kv), kv[0]))
        if self._end_at is not None and self._order_key is not None:
            items = [
                (k, v) for k, v in items
                if not isinstance(v, dict) or v.get(self._order_key) is None
                or v.get(self._order_key) <= self._end_at
            ]
        if self._limit_first is not None:
            items = items[:self._limit_first]
        return OrderedDict(items)


class FakeRtdb:
    """firebase_admin.db.Reference 互換のインメモリ参照"""

    def __init__(self, data=None, path="", state=None):
        if state is None:
            state = {"root": data or {}, "fail_delete": set(), "push_ids": itertools.count(1)}
        self._state = state
        self.path = path.strip("/")

    @property
    def data(self):
        return self._state["root"]

    @property
    def fail_delete(self):
        return self._state["fail_delete"]

    @property
    def key(self):
        return self.path.split("/")[-1] if self.path else None

    def child(self, path):
        joined = f"{self.path}/{path.strip('/')}" if self.path else path.strip("/")
        return FakeRtdb(path=joined, state=self._state)

    def _parts(self):
        return [p for p in self.path.split("/") if p]

    def get(self):
        node = self.data
        for part in self._parts():
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def set(self, value):
        parts = self._parts()
        if not parts:
            self._state["root"] = copy.deepcopy(value)
            return
        node = self.data
        for part in parts[:-1]:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = copy.deepcopy(value)

    def update(self, value):
        for path, child_value in value.items():
            self.child(path).set(child_value)

    def delete(self):
        if self.path in self.fail_delete:
            raise RuntimeError(f"delete failed: {self.path}")
        self.set(None)

    def push(self, value=""):
        ref = self.child(f"-N{next(self._state['push_ids']):08d}")
        ref.set(value)
        return ref

    def transaction(self, transaction_update):
        new_value = transaction_update(self.get())
        self.set(new_value)
        return copy.deepcopy(new_value)

    def order_by_child(self, key):
        return FakeRtdbQuery(self, key)

    def order_by_key(self):
        return FakeRtdbQuery(self)
