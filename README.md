# horcrux

Building blocks for a remote signer for consensus validators, run either as a
single signer or as an m-of-n threshold signer made of several cosigners.

The package provides:

- `horcrux.config`: reading, validating and writing the signer's `config.yaml`,
  and the paths of key and sign-state files under the signer's home directory;
- `horcrux.addresses`: turning cosigner p2p URLs into `host:port` and
  `multi:///` addresses;
- `horcrux.parsing`: URL, `host:port` and duration (`500ms`, `1.5m`) parsing;
- `horcrux.cosigner`: the `Cosigner`, `CosignerSecurity` and `Leader`
  interfaces and the nonce and signature records cosigners exchange;
- `horcrux.nonce_cache`: a leader-side cache of pre-fetched cosigner nonces
  that sizes itself to the signing rate;
- `horcrux.health`: round-trip tracking of cosigners to pick the fastest;
- `horcrux.cosigner_key`: loading and writing Ed25519 key shard files;
- `horcrux.cond`: a broadcast-only condition variable with timed waits;
- `horcrux.cli`: the `horcrux` command line.

## Installation

```
pip install .
```

Python 3.10 or later is required. The only dependency is PyYAML.

## Command line

Initialise a threshold-mode configuration with three cosigners, a threshold
of two and two chain nodes:

```
horcrux config init \
  -n tcp://sentry-1:1234 -n tcp://sentry-2:1234 \
  -c tcp://horcrux-1:2222 -c tcp://horcrux-2:2222 -c tcp://horcrux-3:2222 \
  -t 2
```

`-n` and `-c` may be repeated or given comma-separated lists. Cosigners get
shard IDs 1, 2, 3, … in the order given.

Initialise a single-signer configuration:

```
horcrux config init -m single -n tcp://sentry-1:1234
```

The configuration is written to `$HOME/.horcrux/config.yaml`, or under the
directory given with `--home`, and the `state` directory is created beside it.
An existing file is only replaced when `--overwrite` (`-o`) is given. `--bare`
skips the final validation.

Other options of `config init` (alias `i`):

- `--key-dir` / `-k`: key directory if other than the home directory
- `--debug-addr` / `-d`: listen address for the debug server
- `--gprc-address` / `-g`: GRPC listen address (threshold mode only)
- `--raft-timeout`, `--grpc-timeout`: durations such as `500ms`, `1s`, `1.5m` (default `500ms`)
- `--max-read-size`: max read size for the remote signer connection (default 1048576)

Show version information as JSON (`version`, `commit`, `python_version`):

```
horcrux version
```

On an error the command prints `Error: <message>` to standard error and exits
with status 1.

## Library use

```python
from horcrux.config import Config, ThresholdModeConfig, CosignerConfig, ChainNode

cfg = Config(
    sign_mode="threshold",
    threshold_mode_config=ThresholdModeConfig(
        threshold=2,
        cosigners=[
            CosignerConfig(shard_id=1, p2p_addr="tcp://127.0.0.1:2222"),
            CosignerConfig(shard_id=2, p2p_addr="tcp://127.0.0.1:2223"),
            CosignerConfig(shard_id=3, p2p_addr="tcp://127.0.0.1:2224"),
        ],
        grpc_timeout="1000ms",
        raft_timeout="1000ms",
    ),
    chain_nodes=[ChainNode("tcp://127.0.0.1:1234")],
)
cfg.validate_threshold_mode_config()
print(cfg.to_yaml())
print(cfg.threshold_mode_config.leader_elect_multi_address())
# multi:///127.0.0.1:2222,127.0.0.1:2223,127.0.0.1:2224
```

Validation problems raise `horcrux.config.ConfigError`; malformed URLs raise
`horcrux.parsing.URLError` and bad durations `horcrux.parsing.DurationError`.

`CosignerNonceCache` and `CosignerHealth` work with `Cosigner` and `Leader`
objects that you implement. `CosignerHealth` measures only cosigners that
have a `ping(timeout=...)` method.

## What this package does not do

There is no command to start a signer process. The package does not sign
blocks, connect to chain nodes, serve gRPC, run raft or leader election, deal
key shards from a validator key, create RSA or ECIES keys, migrate older
configuration or key files, or manage sign-state files beyond naming their
paths. The command line covers `config init` and `version` only.

## Running the tests

```
pip install .[test]
pytest
```