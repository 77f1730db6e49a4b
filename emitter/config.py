"""Broker configuration."""

from __future__ import annotations

import ipaddress
import json
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NamedTuple

CHANNEL_SEPARATOR = "/"
MAX_MESSAGE_SIZE = 65536
DEFAULT_PORT = 8080

_OUTBOUND_NAMES = {"private", "public", "external"}


class Address(NamedTuple):
    """A host and port to listen on; an empty host means every interface."""

    host: str
    port: int

    def __str__(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"


def _outbound_ip() -> str:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.connect(("10.254.254.254", 1))
            return probe.getsockname()[0]
    except OSError:
        return "127.0.0.1"


def parse_address(text: str, default_port: int) -> Address:
    """Parse ``host:port``; the host may be an IP, ``localhost`` or a keyword."""
    text = text.strip()
    if text.startswith("["):
        host, sep, rest = text[1:].partition("]")
        if not sep or (rest and not rest.startswith(":")):
            raise ValueError(f"invalid address {text!r}")
        port_text = rest[1:]
    elif text.count(":") > 1:
        host, port_text = text, ""
    else:
        host, _, port_text = text.partition(":")

    if port_text:
        if not port_text.isdigit() or not 0 <= int(port_text) <= 0xFFFF:
            raise ValueError(f"invalid port in address {text!r}")
        port = int(port_text)
    else:
        port = default_port

    if host in _OUTBOUND_NAMES:
        host = _outbound_ip()
    elif host == "localhost":
        host = "127.0.0.1"
    elif host:
        try:
            host = str(ipaddress.ip_address(host))
        except ValueError:
            raise ValueError(f"invalid host in address {text!r}") from None
    return Address(host, port)


def _pick(data: dict[str, Any], out: dict[str, Any], pairs: dict[str, str]) -> None:
    for attr, key in pairs.items():
        if key in data:
            out[attr] = data[key]


def _set_nonempty(out: dict[str, Any], key: str, value: Any) -> None:
    if value:
        out[key] = value


@dataclass
class LimitConfig:
    """Limits such as message size and per-connection rates."""

    message_size: int = 0
    read_rate: int = 0
    flush_rate: int = 0

    _KEYS = {"message_size": "messageSize", "read_rate": "readRate", "flush_rate": "flushRate"}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for attr, key in self._KEYS.items():
            _set_nonempty(out, key, getattr(self, attr))
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LimitConfig:
        kwargs: dict[str, Any] = {}
        _pick(data, kwargs, cls._KEYS)
        return cls(**{k: int(v) for k, v in kwargs.items()})


# Cluster fields whose JSON key is the same as the attribute name.
_CLUSTER_SAME_NAMED = ("seed", "passphrase")


@dataclass
class ClusterConfig:
    """Settings of the gossip cluster."""

    node_name: str = ""
    listen_addr: str = ""
    advertise_addr: str = ""
    seed: str = ""
    passphrase: str = ""
    directory: str = ""

    _KEYS = {
        "node_name": "name",
        "listen_addr": "listen",
        "advertise_addr": "advertise",
        **{name: name for name in _CLUSTER_SAME_NAMED},
        "directory": "dir",
    }

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        _set_nonempty(out, "name", self.node_name)
        out["listen"] = self.listen_addr
        out["advertise"] = self.advertise_addr
        for name in _CLUSTER_SAME_NAMED:
            _set_nonempty(out, name, getattr(self, name))
        _set_nonempty(out, "dir", self.directory)
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClusterConfig:
        kwargs: dict[str, Any] = {}
        _pick(data, kwargs, cls._KEYS)
        return cls(**kwargs)


@dataclass
class TLSConfig:
    """The secure listener."""

    listen_addr: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"listen": self.listen_addr}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TLSConfig:
        return cls(listen_addr=data.get("listen", ""))


@dataclass
class ProviderConfig:
    """The name of a provider and its own settings."""

    provider: str = ""
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"provider": self.provider}
        _set_nonempty(out, "config", dict(self.config))
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderConfig:
        return cls(provider=data.get("provider", ""), config=dict(data.get("config") or {}))


_PROVIDERS = {
    "storage": "storage",
    "contract": "contract",
    "metering": "metering",
    "logging": "logging",
    "monitor": "monitor",
}


def _require_dict(data: Any, name: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"{name} must be an object")
    return data


@dataclass
class Config:
    """Main configuration of the broker."""

    listen_addr: str = ""
    license: str = ""
    matcher: str = ""
    debug: bool = False
    limit: LimitConfig = field(default_factory=LimitConfig)
    tls: TLSConfig | None = None
    cluster: ClusterConfig | None = None
    storage: ProviderConfig | None = None
    contract: ProviderConfig | None = None
    metering: ProviderConfig | None = None
    logging: ProviderConfig | None = None
    monitor: ProviderConfig | None = None
    vault: dict[str, Any] = field(default_factory=dict)
    dynamo: dict[str, Any] = field(default_factory=dict)
    _listen: Address | None = field(default=None, init=False, repr=False, compare=False)

    def max_message_bytes(self) -> int:
        """The configured message size limit, never above 64 KiB."""
        size = self.limit.message_size
        if size <= 0 or size > MAX_MESSAGE_SIZE:
            return MAX_MESSAGE_SIZE
        return size

    def addr(self) -> Address:
        """The parsed listen address; raises ValueError when it is invalid."""
        if self._listen is None:
            self._listen = parse_address(self.listen_addr, DEFAULT_PORT)
        return self._listen

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form of the configuration."""
        out: dict[str, Any] = {"listen": self.listen_addr, "license": self.license}
        _set_nonempty(out, "matcher", self.matcher)
        _set_nonempty(out, "debug", self.debug)
        out["limit"] = self.limit.to_dict()
        if self.tls is not None:
            out["tls"] = self.tls.to_dict()
        if self.cluster is not None:
            out["cluster"] = self.cluster.to_dict()
        for attr, key in _PROVIDERS.items():
            provider = getattr(self, attr)
            if provider is not None:
                out[key] = provider.to_dict()
        _set_nonempty(out, "vault", dict(self.vault))
        _set_nonempty(out, "dynamodb", dict(self.dynamo))
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Build a configuration from its JSON form."""
        data = _require_dict(data, "configuration")
        conf = cls(
            listen_addr=data.get("listen", ""),
            license=data.get("license", ""),
            matcher=data.get("matcher", ""),
            debug=bool(data.get("debug", False)),
            limit=LimitConfig.from_dict(_require_dict(data.get("limit") or {}, "limit")),
            vault=dict(data.get("vault") or {}),
            dynamo=dict(data.get("dynamodb") or {}),
        )
        if data.get("tls") is not None:
            conf.tls = TLSConfig.from_dict(_require_dict(data["tls"], "tls"))
        if data.get("cluster") is not None:
            conf.cluster = ClusterConfig.from_dict(_require_dict(data["cluster"], "cluster"))
        for attr, key in _PROVIDERS.items():
            if data.get(key) is not None:
                setattr(conf, attr, ProviderConfig.from_dict(_require_dict(data[key], key)))
        return conf


def new_default() -> Config:
    """The configuration written when none exists yet."""
    return Config(
        listen_addr=":8080",
        tls=TLSConfig(listen_addr=":443"),
        cluster=ClusterConfig(listen_addr=":4000", advertise_addr="external:4000"),
        storage=ProviderConfig(provider="inmemory"),
    )


def load_config(filename: str | Path) -> Config:
    """Read the configuration file, creating it with defaults when missing."""
    path = Path(filename)
    if not path.exists():
        conf = new_default()
        path.write_text(json.dumps(conf.to_dict(), indent=2), encoding="utf-8")
        return conf
    try:
        return Config.from_dict(json.loads(path.read_text(encoding="utf-8")))
    except (ValueError, TypeError) as exc:
        raise ValueError(f"Unable to parse configuration, due to {exc}") from exc