"""
Entities tracked by Theseus.

Every entity is a plain value keyed by a natural key. Nested entities
(the host inside a container, the team inside a user, the organization
inside a team) are snapshots taken at write time, not references.

Field names in `to_dict` are the ones used on disk and on the JSON API.
"""
from dataclasses import dataclass, field
from typing import Dict, List


class ContainerStatus:
    RUNNING = "running"
    RESTARTING = "restarting"
    STOPPED = "stopped"


class _FieldReader:
    """
    Typed access to a decoded JSON object.

    In strict mode every requested field must be present; in partial mode
    a missing field falls back to the given default. Present fields are
    always type-checked.
    """

    def __init__(self, data, partial: bool = False):
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        self.data = data
        self.partial = partial

    def get(self, name: str, kind: type, default=None, nullable: bool = False):
        if name not in self.data:
            if self.partial:
                return default
            raise ValueError(f"missing field '{name}'")

        value = self.data[name]
        if value is None and nullable:
            return default
        # bool is a subclass of int, but never a valid port number
        if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
            raise ValueError(f"field '{name}' must be of type {kind.__name__}")
        return value

    def required(self, name: str, kind: type = str):
        """Like get(), but the field is mandatory even in partial mode."""
        if name not in self.data:
            raise ValueError(f"missing field '{name}'")
        return self.get(name, kind)


def _string_map(value: dict, name: str) -> Dict[str, str]:
    for k, v in value.items():
        if not isinstance(v, str):
            raise ValueError(f"field '{name}' must map strings to strings (bad entry '{k}')")
    return dict(value)


@dataclass
class HostMachine:
    id: str
    ip: str = ""
    status: str = ""

    @property
    def key(self) -> str:
        return self.id

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'ip': self.ip,
            'status': self.status,
        }

    @classmethod
    def from_dict(cls, data: dict, partial: bool = False) -> "HostMachine":
        reader = _FieldReader(data, partial)
        return cls(
            id=reader.required('id'),
            ip=reader.get('ip', str, ""),
            status=reader.get('status', str, ""),
        )


@dataclass
class PortBinding:
    internal: int
    external: int

    def to_dict(self) -> dict:
        return {'internal': self.internal, 'external': self.external}

    @classmethod
    def from_dict(cls, data: dict) -> "PortBinding":
        reader = _FieldReader(data)
        return cls(
            internal=reader.get('internal', int),
            external=reader.get('external', int),
        )


@dataclass
class Container:
    """
    A deployed or declared container.

    `name` is the image to run and `container` is the name given to the
    container on the runtime.
    """
    id: str
    name: str = ""
    container: str = ""
    hostmachine: HostMachine = field(default_factory=lambda: HostMachine(id=""))
    restartpolicy: str = ""
    ports: List[PortBinding] = field(default_factory=list)
    environmentvariables: Dict[str, str] = field(default_factory=dict)
    volumemounts: Dict[str, str] = field(default_factory=dict)
    shmsize: str = ""
    status: str = ""

    @property
    def key(self) -> str:
        return self.id

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'container': self.container,
            'hostmachine': self.hostmachine.to_dict(),
            'restartpolicy': self.restartpolicy,
            'ports': [p.to_dict() for p in self.ports],
            'environmentvariables': dict(self.environmentvariables),
            'volumemounts': dict(self.volumemounts),
            'shmsize': self.shmsize,
            'status': self.status,
        }

    @classmethod
    def from_dict(cls, data: dict, partial: bool = False) -> "Container":
        reader = _FieldReader(data, partial)

        host = reader.get('hostmachine', dict)
        ports = reader.get('ports', list, [], nullable=True)
        env = reader.get('environmentvariables', dict, {}, nullable=True)
        volumes = reader.get('volumemounts', dict, {}, nullable=True)

        return cls(
            id=reader.required('id'),
            name=reader.get('name', str, ""),
            container=reader.get('container', str, ""),
            hostmachine=HostMachine.from_dict(host, partial) if host is not None else HostMachine(id=""),
            restartpolicy=reader.get('restartpolicy', str, ""),
            ports=[PortBinding.from_dict(p) for p in ports],
            environmentvariables=_string_map(env, 'environmentvariables'),
            volumemounts=_string_map(volumes, 'volumemounts'),
            shmsize=reader.get('shmsize', str, ""),
            status=reader.get('status', str, ""),
        )


@dataclass
class Organization:
    name: str
    description: str = ""

    @property
    def key(self) -> str:
        return self.name

    def to_dict(self) -> dict:
        return {'name': self.name, 'description': self.description}

    @classmethod
    def from_dict(cls, data: dict, partial: bool = False) -> "Organization":
        reader = _FieldReader(data, partial)
        return cls(
            name=reader.required('name'),
            description=reader.get('description', str, ""),
        )


@dataclass
class Team:
    name: str
    description: str = ""
    organization: Organization = field(default_factory=lambda: Organization(name=""))

    @property
    def key(self) -> str:
        return self.name

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'description': self.description,
            'organization': self.organization.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict, partial: bool = False) -> "Team":
        reader = _FieldReader(data, partial)
        org = reader.get('organization', dict)
        return cls(
            name=reader.required('name'),
            description=reader.get('description', str, ""),
            organization=Organization.from_dict(org, partial) if org is not None else Organization(name=""),
        )


@dataclass
class User:
    username: str
    password_hash: str = ""
    role: str = ""
    team: Team = field(default_factory=lambda: Team(name=""))

    @property
    def key(self) -> str:
        return self.username

    def to_dict(self, include_password_hash: bool = True) -> dict:
        data = {
            'username': self.username,
            'role': self.role,
            'team': self.team.to_dict(),
        }
        if include_password_hash:
            data['password_hash'] = self.password_hash
        return data

    @classmethod
    def from_dict(cls, data: dict, partial: bool = False) -> "User":
        reader = _FieldReader(data, partial)
        team = reader.get('team', dict)
        return cls(
            username=reader.required('username'),
            password_hash=reader.get('password_hash', str, ""),
            role=reader.get('role', str, ""),
            team=Team.from_dict(team, partial) if team is not None else Team(name=""),
        )

