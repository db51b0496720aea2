"""
Resource and record models
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence


@dataclass(frozen=True)
class ResourceSpec:
    """One remote table and the fixed query parameters sent with every page."""

    name: str
    query: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, value: Any) -> 'ResourceSpec':
        """Accept a ResourceSpec, a (name, query) pair or a {'name', 'query'} mapping."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(name=value, query={})
        if isinstance(value, Mapping):
            return cls(name=value['name'], query=dict(value.get('query') or {}))
        name, query = value
        return cls(name=name, query=dict(query or {}))


@dataclass
class Record:
    """A fetched record. Identity is `id`; `fields` is opaque to the engine."""

    id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    created_time: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> 'Record':
        return cls(
            id=payload['id'],
            fields=dict(payload.get('fields') or {}),
            created_time=payload.get('createdTime'),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {'id': self.id, 'fields': self.fields}
        if self.created_time:
            data['createdTime'] = self.created_time
        return data


def snapshot_to_dict(snapshot: Mapping[str, Sequence[Record]]) -> Dict[str, List[Dict[str, Any]]]:
    """JSON-safe copy of a resource key -> records mapping."""
    return {key: [record.to_dict() for record in records] for key, records in snapshot.items()}
