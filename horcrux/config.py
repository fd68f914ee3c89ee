"""On-disk configuration and runtime paths of the signer."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from enum import Enum

import yaml

from .addresses import multi_address
from .parsing import DurationError, URLError, parse_duration, parse_url, split_host_port


class SignMode(str, Enum):
    THRESHOLD = "threshold"
    SINGLE = "single"


class ConfigError(ValueError):
    """Invalid configuration or missing configured file."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


@dataclass
class ChainNode:
    priv_val_addr: str

    def validate(self) -> None:
        parse_url(self.priv_val_addr)


@dataclass
class CosignerConfig:
    shard_id: int
    p2p_addr: str


@dataclass
class ThresholdModeConfig:
    threshold: int = 0
    cosigners: list[CosignerConfig] = field(default_factory=list)
    grpc_timeout: str = ""
    raft_timeout: str = ""

    def leader_elect_multi_address(self) -> str:
        return multi_address(c.p2p_addr for c in self.cosigners)


def validate_chain_nodes(nodes) -> None:
    for node in nodes or ():
        node.validate()


def _duplicate_cosigners(cosigners) -> dict[int, list[str]]:
    by_id: dict[int, list[str]] = {}
    for c in cosigners:
        by_id.setdefault(c.shard_id, []).append(c.p2p_addr)
    return {k: v for k, v in by_id.items() if len(v) > 1}


def validate_cosigners(cosigners) -> None:
    dupl = _duplicate_cosigners(cosigners)
    if dupl:
        rendered = " ".join(f"{k}:[{' '.join(v)}]" for k, v in sorted(dupl.items()))
        raise ConfigError(f"found duplicate cosigner shard ID(s) in args: map[{rendered}]")
    shards = len(cosigners)
    for c in cosigners:
        if c.shard_id < 1 or c.shard_id > shards:
            raise ConfigError(
                f"cosigner shard ID {c.shard_id} in args is out of range, "
                f"must be between 1 and {shards}, inclusive"
            )
        try:
            url = parse_url(c.p2p_addr)
        except URLError as err:
            raise ConfigError(
                f"failed to parse cosigner (shard ID: {c.shard_id}) p2p address: {err}"
            ) from err
        try:
            host, _ = split_host_port(url.host)
        except ValueError as err:
            raise ConfigError(
                f"failed to parse cosigner (shard ID: {c.shard_id}) host port: {err}"
            ) from err
        if host == "0.0.0.0":
            raise ConfigError("host cannot be 0.0.0.0, must be reachable from other cosigners")


def cosigners_from_flag(cosigners) -> list[CosignerConfig]:
    return [CosignerConfig(shard_id=i, p2p_addr=c) for i, c in enumerate(cosigners, start=1)]


def chain_nodes_from_flag(nodes) -> list[ChainNode]:
    out = [ChainNode(priv_val_addr=n) for n in nodes]
    validate_chain_nodes(out)
    return out


_PLAIN = re.compile(r"[A-Za-z0-9_./~@%+-][A-Za-z0-9_./:~@%+\[\]-]*")


def _scalar(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    text = str(value)
    if _PLAIN.fullmatch(text) and ": " not in text and yaml.safe_load(text) == text:
        return text
    return json.dumps(text)


@dataclass
class Config:
    sign_mode: str = ""
    priv_val_key_dir: str | None = None
    threshold_mode_config: ThresholdModeConfig | None = None
    chain_nodes: list[ChainNode] = field(default_factory=list)
    debug_addr: str = ""
    grpc_addr: str = ""
    max_read_size: int = 0

    def nodes(self) -> list[str]:
        return [n.priv_val_addr for n in self.chain_nodes]

    def to_yaml(self) -> str:
        lines = []
        if self.priv_val_key_dir is not None:
            lines.append(f"keyDir: {_scalar(self.priv_val_key_dir)}")
        mode = self.sign_mode.value if isinstance(self.sign_mode, SignMode) else self.sign_mode
        lines.append(f"signMode: {_scalar(mode)}")
        tm = self.threshold_mode_config
        if tm is not None:
            lines.append("thresholdMode:")
            lines.append(f"  threshold: {tm.threshold}")
            if tm.cosigners:
                lines.append("  cosigners:")
                for c in tm.cosigners:
                    lines.append(f"  - shardID: {c.shard_id}")
                    lines.append(f"    p2pAddr: {_scalar(c.p2p_addr)}")
            else:
                lines.append("  cosigners: []")
            lines.append(f"  grpcTimeout: {_scalar(tm.grpc_timeout)}")
            lines.append(f"  raftTimeout: {_scalar(tm.raft_timeout)}")
        if self.chain_nodes:
            lines.append("chainNodes:")
            lines.extend(f"- privValAddr: {_scalar(n.priv_val_addr)}" for n in self.chain_nodes)
        else:
            lines.append("chainNodes: []")
        lines.append(f"debugAddr: {_scalar(self.debug_addr)}")
        lines.append(f"grpcAddr: {_scalar(self.grpc_addr)}")
        lines.append(f"maxReadSize: {self.max_read_size}")
        return "\n".join(lines) + "\n"

    @classmethod
    def from_yaml(cls, text: str) -> "Config":
        data = yaml.safe_load(text) or {}
        tm_data = data.get("thresholdMode")
        tm = None
        if tm_data is not None:
            tm = ThresholdModeConfig(
                threshold=int(tm_data.get("threshold") or 0),
                cosigners=[
                    CosignerConfig(shard_id=int(c.get("shardID") or 0), p2p_addr=str(c.get("p2pAddr") or ""))
                    for c in tm_data.get("cosigners") or []
                ],
                grpc_timeout=str(tm_data.get("grpcTimeout") or ""),
                raft_timeout=str(tm_data.get("raftTimeout") or ""),
            )
        mode = str(data.get("signMode") or "")
        try:
            sign_mode = SignMode(mode)
        except ValueError:
            sign_mode = mode
        key_dir = data.get("keyDir")
        return cls(
            sign_mode=sign_mode,
            priv_val_key_dir=str(key_dir) if key_dir is not None else None,
            threshold_mode_config=tm,
            chain_nodes=[ChainNode(str(n.get("privValAddr") or "")) for n in data.get("chainNodes") or []],
            debug_addr=str(data.get("debugAddr") or ""),
            grpc_addr=str(data.get("grpcAddr") or ""),
            max_read_size=int(data.get("maxReadSize") or 0),
        )

    def validate_single_signer_config(self) -> None:
        validate_chain_nodes(self.chain_nodes)

    def validate_threshold_mode_config(self) -> None:
        self.validate_single_signer_config()
        tm = self.threshold_mode_config
        if tm is None:
            raise ConfigError("cosigner config can't be empty")
        num_shards = len(tm.cosigners)
        if tm.threshold <= num_shards // 2:
            raise ConfigError(
                f"threshold ({tm.threshold}) must be greater than number of shards ({num_shards}) / 2"
            )
        if num_shards < tm.threshold:
            raise ConfigError(
                f"number of shards ({num_shards}) must be greater or equal to threshold ({tm.threshold})"
            )
        try:
            parse_duration(tm.raft_timeout)
        except DurationError as err:
            raise ConfigError(f"invalid raftTimeout: {err}") from err
        try:
            parse_duration(tm.grpc_timeout)
        except DurationError as err:
            raise ConfigError(f"invalid grpcTimeout: {err}") from err
        validate_cosigners(tm.cosigners)


def _require_file(path: str) -> str:
    try:
        st = os.stat(path)
    except FileNotFoundError:
        raise ConfigError(
            f"file doesn't exist at path ({path}): stat {path}: no such file or directory", path
        ) from None
    except OSError as err:
        raise ConfigError(f"unexpected error checking file existence ({path}): {err}", path) from err
    if os.path.isdir(path) or (st.st_mode & 0o170000) == 0o040000:
        raise ConfigError(f"path is not a file ({path})", path)
    return path


@dataclass
class RuntimeConfig:
    home_dir: str = ""
    config_file: str = ""
    state_dir: str = ""
    pid_file: str = ""
    config: Config = field(default_factory=Config)

    def _key_dir(self) -> str:
        return self.config.priv_val_key_dir or self.home_dir

    def key_file_path_single_signer(self, chain_id: str) -> str:
        return os.path.join(self._key_dir(), f"{chain_id}_priv_validator_key.json")

    def key_file_path_cosigner(self, chain_id: str) -> str:
        return os.path.join(self._key_dir(), f"{chain_id}_shard.json")

    def key_file_path_cosigner_rsa(self) -> str:
        return os.path.join(self._key_dir(), "rsa_keys.json")

    def key_file_path_cosigner_ecies(self) -> str:
        return os.path.join(self._key_dir(), "ecies_keys.json")

    def priv_val_state_file(self, chain_id: str) -> str:
        return os.path.join(self.state_dir, f"{chain_id}_priv_validator_state.json")

    def cosigner_state_file(self, chain_id: str) -> str:
        return os.path.join(self.state_dir, f"{chain_id}_share_sign_state.json")

    def write_config_file(self) -> None:
        fd = os.open(self.config_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(self.config.to_yaml())

    def key_file_exists_single_signer(self, chain_id: str) -> str:
        return _require_file(self.key_file_path_single_signer(chain_id))

    def key_file_exists_cosigner(self, chain_id: str) -> str:
        return _require_file(self.key_file_path_cosigner(chain_id))

    def key_file_exists_cosigner_rsa(self) -> str:
        return _require_file(self.key_file_path_cosigner_rsa())

    def key_file_exists_cosigner_ecies(self) -> str:
        return _require_file(self.key_file_path_cosigner_ecies())