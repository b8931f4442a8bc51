"""
concrnt — client runtime for the concrnt federated social-object network.

The client resolves which domain hosts an identity, authenticates to any
domain with self-issued secp256k1 bearer tokens (and home-domain issued
passports for foreign domains), keeps a coherent cache of remote objects,
and follows live mutations over a reconnecting websocket.

Package layout (src/concrnt/):
  core/       — config, constants, exceptions, logging, keyring secrets
  identity/   — keys, addresses, signing, bearer tokens, subkey delegation
  models/     — signed documents and wire objects
  transport/  — timed fetch and the credentialed transport
  cache/      — promise-memoized object caches
  realtime/   — websocket protocol and the reconnecting socket
  readers/    — timeline and subscription readers
  api.py      — resolver, object caches and REST calls for one home domain
  client.py   — high-level facade
  cli/        — Click CLI entry point
"""

__version__ = "0.3.0"
__all__ = ["__version__"]
