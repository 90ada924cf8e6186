# conflux

Building blocks for the SKS set reconciliation ("recon") protocol, which
synchronizing OpenPGP key servers use between themselves. The protocol
reconciles two sets, and the amount it sends stays close to the size of their
difference. This package has the finite-field arithmetic, the wire format of
the protocol messages, and the settings of a reconciling peer.

It needs only the Python standard library. Python 3.11 or later is required.

## Modules

- `conflux.zp`: integers in a finite field Z(p) and sets of them.
  - `Zp` is an immutable field element. You build one with `Zp.from_int`,
    `Zp.from_str` (base 10), `Zp.from_bytes` (little-endian) or `Zp.random`.
    It supports `+`, `-`, `*`, `/`, `**`, unary `-`, comparisons, `int()`,
    `inv()`, `is_zero()`, `to_bytes()` (minimal little-endian bytes) and
    `full_key_hash()` (hex of those bytes).
  - `ZSet` is a mutable set of elements from one field. It has `add`,
    `remove`, `update`, `difference_update` and `items()`, and supports `in`,
    `len`, iteration in ascending order and `==`.
  - `zset_diff(a, b)` returns the elements of `a` that are not in `b`.
  - The moduli `P_128`, `P_160`, `P_256`, `P_512` and `P_SKS` are included.
  - `FieldMismatchError` is raised when values from different fields are
    combined, or when one is added to a set of another field.
- `conflux.messages`: the recon wire format.
  - The message classes are `ReconRqstPoly`, `ReconRqstFull`, `Elements`,
    `FullElements`, `SyncFail`, `Done`, `Flush`, `Error`, `DbRqst`,
    `DbRepl` and `Config`. Their type codes are in `MsgType`. Each class has
    `marshal(w)` and the class method `unmarshal(r)` for its payload.
  - `read_msg` and `write_msg` / `write_msg_direct` read and write
    length-prefixed, type-tagged messages on binary streams.
  - Lower-level helpers: `read_int`, `read_len`, `write_int`, `read_string`,
    `write_string`, `read_prefix`, `write_prefix` (for `Prefix` bit strings),
    `read_zp`, `write_zp`, `read_zz_array`, `write_zz_array`, `read_zset`,
    `write_zset` and `pad_sks_element`.
  - `ProtocolError` is raised on truncated input, unknown message codes,
    lengths above `MAX_READ_LEN`, and malformed integer config values.
- `conflux.settings`: peer configuration.
  - `parse_settings(text)` reads TOML with a `[conflux.recon]` table. It
    accepts the legacy `httpPort`, `reconPort` and `partners` keys, checks
    that the HTTP and recon addresses resolve, and sorts the filters.
    `default_settings()` returns the defaults.
  - `Settings` has `resolve()`, `add_filters(...)` (a sorted list with no
    duplicates), `matcher()` and `config()`. `config()` builds the protocol
    `Config` message, with the HTTP port taken from the HTTP address.
  - `PTreeConfig` holds the prefix-tree parameters and has
    `split_threshold()`, `join_threshold()` and `num_samples()`.
  - `Partner` describes a recon partner. `update_ips()` refreshes the
    partner's allowed source addresses through DNS.
  - `IPMatcher` decides who may connect. `match(ip)` accepts loopback
    addresses, addresses in an allowed CIDR block and addresses of known
    partners. `random_partner()` picks a resolvable partner at random,
    weighted by `weight`; a weight of 0 counts as 100.
  - `NetType` names the network: `""` or `"tcp"`, or `"unix"`.
  - `SettingsError` is raised for malformed TOML, unknown networks and
    addresses that cannot be parsed or resolved.
- `conflux.recover`: `Recover` records the elements that a partner holds
  and the local peer is missing. It carries a `done` event.
  `recover_addr()` gives the `host:port` to fetch them from: the partner's
  configured recon host, or else the connection's remote host, together with
  the HTTP port that the partner advertised. `PeerMode` lists the roles a
  peer can take on (default, gossip only, serve only).

## Installation

```
pip install .
```

## Examples

Arithmetic in a field:

```python
from conflux.zp import Zp

a = Zp.from_int(5, 1)
b = Zp.from_int(5, 2)
print(int(a / b))   # 3, because 3 * 2 == 1 (mod 5)
```

Writing and reading a protocol message:

```python
import io
from conflux.messages import Config, read_msg, write_msg

buf = io.BytesIO()
write_msg(buf, Config(version="1.1.6", http_port=11371, bit_quantum=2, mbar=5, filters=""))
buf.seek(0)
msg = read_msg(buf)
assert msg.http_port == 11371
```

Loading settings and checking an incoming address:

```python
from conflux.settings import parse_settings

settings = parse_settings("""
[conflux.recon]
httpAddr = ":11371"
reconAddr = ":11370"

[conflux.recon.partner.alice]
httpAddr = "192.0.2.10:11371"
reconAddr = "192.0.2.10:11370"
""")
matcher = settings.matcher()
print(matcher.match("192.0.2.10") is not None)   # True
```

## What this package does not do

It contains no running peer. It does not listen for recon connections or
gossip with partners, and it has no prefix tree, no storage and no
rational-function interpolation to solve reconciliations. `PeerMode` and
`Recover` describe how a peer would run and what it would hand over, but
nothing in the package starts one. The package also has no command-line
program.

## Running the tests

```
pip install .[test]
pytest
```