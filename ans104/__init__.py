"""
ans104: streaming decoder for ANS-104 bundled data transactions.

Features:

- Offset-table driven traversal: every item is located from the bundle header,
  so one damaged item header costs that item only.
- Nested bundles (items tagged Bundle-Format: binary / Bundle-Version: 2.0.0)
  are expanded in place on an explicit stack with a depth cap.
- Payloads stream to a sink in bounded chunks; incomplete outputs never look
  complete.
- Local files or gateway transactions (httpx) as input; a writer and signers
  (PyCryptodomex) to build bundles.

Signatures are not verified. See ans104.walker for the decoding entry point.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "errors",
    "tags",
    "bundle",
    "item",
    "stream",
    "sinks",
    "walker",
    "signing",
    "fetch",
    "cli",
    "writer",
]

# Programmatic API: ans104.walker.BundleWalker with a sink from ans104.sinks;
# the CLI functions in ans104.cli (cmd_unbundle/cmd_list) take normal parameters.
