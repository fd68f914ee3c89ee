"""Command-line entry point: configuration setup and version information."""

from __future__ import annotations

import argparse
import json
import os
import platform
import sys
from dataclasses import dataclass
from importlib import metadata

import yaml

from .config import (
    Config,
    RuntimeConfig,
    SignMode,
    ThresholdModeConfig,
    chain_nodes_from_flag,
    cosigners_from_flag,
)

DEFAULT_MAX_READ_SIZE = 1024 * 1024
DEFAULT_TIMEOUT = "500ms"

# Filled in by release builds.
COMMIT = ""


class CommandError(Exception):
    """A command could not complete."""


@dataclass
class VersionInfo:
    """Version information of the running program."""

    version: str
    git_commit: str
    python_version: str

    def as_dict(self) -> dict[str, str]:
        return {
            "version": self.version,
            "commit": self.git_commit,
            "python_version": self.python_version,
        }


def version_info() -> VersionInfo:
    """Collect the package version, commit and interpreter description."""
    try:
        version = metadata.version("horcrux")
    except metadata.PackageNotFoundError:
        version = ""
    runtime = (
        f"{platform.python_implementation()} {platform.python_version()} "
        f"{sys.platform}/{platform.machine()}"
    )
    return VersionInfo(version=version, git_commit=COMMIT, python_version=runtime)


def load_runtime_config(home: str | None) -> RuntimeConfig:
    """Build the runtime paths for a home directory and read its config file if present."""
    if not home:
        home = os.path.join(os.path.expanduser("~"), ".horcrux")
    runtime = RuntimeConfig(
        home_dir=home,
        config_file=os.path.join(home, "config.yaml"),
        state_dir=os.path.join(home, "state"),
        pid_file=os.path.join(home, "horcrux.pid"),
    )
    try:
        with open(runtime.config_file, encoding="utf-8") as fh:
            text = fh.read()
    except OSError as err:
        print(f"no config exists at default location: {err}", file=sys.stderr)
        return runtime
    try:
        runtime.config = Config.from_yaml(text)
    except (yaml.YAMLError, AttributeError, TypeError, ValueError) as err:
        raise CommandError(f"failed to read config file {runtime.config_file}: {err}") from err
    return runtime


def _flatten(values: list[str] | None) -> list[str]:
    out: list[str] = []
    for value in values or ():
        if value:
            out.extend(value.split(","))
    return out


def init_config(runtime: RuntimeConfig, args: argparse.Namespace) -> Config:
    """Create the config file and state directory from parsed `config init` flags."""
    chain_nodes = chain_nodes_from_flag(_flatten(args.node))

    if os.path.exists(runtime.config_file) and not args.overwrite:
        raise CommandError(
            f"{runtime.config_file} already exists. Provide the -o flag to overwrite the existing config"
        )

    key_dir = args.key_dir or None
    if args.mode == SignMode.THRESHOLD.value:
        cfg = Config(
            sign_mode=SignMode.THRESHOLD,
            priv_val_key_dir=key_dir,
            threshold_mode_config=ThresholdModeConfig(
                threshold=args.threshold,
                cosigners=cosigners_from_flag(_flatten(args.cosigner)),
                grpc_timeout=args.grpc_timeout,
                raft_timeout=args.raft_timeout,
            ),
            chain_nodes=chain_nodes,
            debug_addr=args.debug_addr,
            grpc_addr=args.grpc_address,
            max_read_size=args.max_read_size,
        )
        if not args.bare:
            cfg.validate_threshold_mode_config()
    else:
        cfg = Config(
            sign_mode=SignMode.SINGLE,
            priv_val_key_dir=key_dir,
            chain_nodes=chain_nodes,
            debug_addr=args.debug_addr,
            max_read_size=args.max_read_size,
        )
        if not args.bare:
            cfg.validate_single_signer_config()

    os.makedirs(runtime.state_dir, mode=0o755, exist_ok=True)
    runtime.config = cfg
    runtime.write_config_file()
    return cfg


def _run_init(runtime: RuntimeConfig, args: argparse.Namespace) -> None:
    init_config(runtime, args)
    print(f"Successfully initialized configuration: {runtime.config_file}")


def _run_version(_runtime: RuntimeConfig, args: argparse.Namespace) -> str:
    """Write the version information as indented JSON and return the text written."""
    info = version_info()
    text = json.dumps(info.as_dict(), indent=2)
    stream = getattr(args, "stdout", None) or sys.stdout
    stream.write(text + "\n")
    stream.flush()
    return text


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for every command."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--home",
        default=argparse.SUPPRESS,
        help="Directory for config and data (default is $HOME/.horcrux)",
    )

    parser = argparse.ArgumentParser(
        prog="horcrux",
        description="A tendermint remote signer with both threshold signer and single signer modes",
    )
    parser.add_argument(
        "--home", default=None, help="Directory for config and data (default is $HOME/.horcrux)"
    )
    commands = parser.add_subparsers(dest="command")

    config_parser = commands.add_parser(
        "config", parents=[common], help="Commands to configure the horcrux signer"
    )
    config_parser.set_defaults(handler=lambda _r, _a: config_parser.print_help())
    config_commands = config_parser.add_subparsers(dest="config_command")

    init = config_commands.add_parser(
        "init",
        aliases=["i"],
        parents=[common],
        help="initialize configuration file and home directory if one doesn't already exist",
        description="initialize configuration file. for threshold signer mode, "
        "--cosigner flags and --threshold flag are required.",
    )
    init.add_argument(
        "-m", "--mode", default=SignMode.THRESHOLD.value,
        help='sign mode, "threshold" (recommended) or "single" (unsupported). '
        "threshold mode requires --cosigner (multiple) and --threshold",
    )
    init.add_argument(
        "-n", "--node", action="append",
        help="chain nodes in format tcp://{node-addr}:{privval-port}",
    )
    init.add_argument(
        "-c", "--cosigner", action="append",
        help="cosigners in format tcp://{cosigner-addr}:{p2p-port}",
    )
    init.add_argument(
        "-t", "--threshold", type=int, default=0,
        help="number of shards required for threshold signature",
    )
    init.add_argument(
        "-d", "--debug-addr", default="",
        help="listen address for debug server and prometheus metrics in format localhost:8543",
    )
    init.add_argument("-k", "--key-dir", default="", help="key directory if other than home directory")
    init.add_argument(
        "--raft-timeout", default=DEFAULT_TIMEOUT,
        help="cosigner raft timeout value, a duration such as 1s, 1000ms, 1.5m",
    )
    init.add_argument(
        "--grpc-timeout", default=DEFAULT_TIMEOUT,
        help="cosigner grpc timeout value, a duration such as 1s, 1000ms, 1.5m",
    )
    init.add_argument("-o", "--overwrite", action="store_true", help="overwrite an existing config.yaml")
    init.add_argument(
        "--bare", action="store_true",
        help="allows initialization without providing any flags. "
        "If flags are provided, will not perform final validation",
    )
    init.add_argument(
        "-g", "--gprc-address", dest="grpc_address", default="",
        help="GRPC address if listener should be enabled",
    )
    init.add_argument(
        "--max-read-size", type=int, default=DEFAULT_MAX_READ_SIZE,
        help="max read size for remote signer connection",
    )
    init.set_defaults(handler=_run_init)

    version = commands.add_parser("version", parents=[common], help="Version information for horcrux")
    version.set_defaults(handler=_run_version)
    return parser


def main(argv=None) -> int:
    """Run the command line and return the exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 0
    try:
        runtime = load_runtime_config(args.home)
        handler(runtime, args)
    except (CommandError, ValueError, OSError) as err:
        print(f"Error: {err}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())