import json
import logging
from dataclasses import dataclass
from typing import Callable, Generic, List, TypeVar

from .errors import CorruptRecord, NotFound
from .models import Container, HostMachine, Organization, Team, User
from .store import (
    CONTAINERS,
    HOST_MACHINES,
    ORGANIZATIONS,
    TEAMS,
    USERS,
    EntityStore,
)

logger = logging.getLogger(__name__)

E = TypeVar('E')


class EntityRepository(Generic[E]):
    """
    Typed save/get/list for one entity kind.

    Entities are stored as UTF-8 JSON under their natural key. A record
    that cannot be decoded back into the entity is reported as
    CorruptRecord, never returned half-filled.
    """

    def __init__(
        self,
        store: EntityStore,
        collection: str,
        kind: str,
        decode: Callable[[dict], E]
    ):
        self.store = store
        self.collection = collection
        self.kind = kind
        self._decode = decode

    def _encode(self, entity: E) -> bytes:
        return json.dumps(entity.to_dict()).encode('utf-8')

    def _load(self, key: str, raw: bytes) -> E:
        try:
            return self._decode(json.loads(raw.decode('utf-8')))
        except (UnicodeDecodeError, ValueError, TypeError) as e:
            logger.error(f"Corrupt {self.kind} record '{key}' in {self.collection}: {e}")
            raise CorruptRecord(self.kind, key, str(e)) from e

    def save(self, entity: E):
        """Store the entity, replacing any previous record with the same key."""
        self.store.update(self.collection, entity.key.encode('utf-8'), self._encode(entity))
        logger.debug(f"Saved {self.kind} '{entity.key}'")

    def get(self, key: str) -> E:
        raw = self.store.read(self.collection, key.encode('utf-8'))
        if raw is None:
            raise NotFound(self.kind, key)
        return self._load(key, raw)

    def list_all(self) -> List[E]:
        """All entities of this kind; one corrupt record fails the whole listing."""
        return [
            self._load(key.decode('utf-8', errors='replace'), raw)
            for key, raw in self.store.scan(self.collection)
        ]


@dataclass
class Repositories:
    containers: EntityRepository[Container]
    host_machines: EntityRepository[HostMachine]
    users: EntityRepository[User]
    teams: EntityRepository[Team]
    organizations: EntityRepository[Organization]

    @classmethod
    def for_store(cls, store: EntityStore) -> "Repositories":
        return cls(
            containers=EntityRepository(store, CONTAINERS, 'container', Container.from_dict),
            host_machines=EntityRepository(store, HOST_MACHINES, 'host machine', HostMachine.from_dict),
            users=EntityRepository(store, USERS, 'user', User.from_dict),
            teams=EntityRepository(store, TEAMS, 'team', Team.from_dict),
            organizations=EntityRepository(store, ORGANIZATIONS, 'organization', Organization.from_dict),
        )
