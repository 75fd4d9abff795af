"""Ledger access — registry rules, transports and the typed client.

The web3 transport lives in vaultledger.ledger.web3_transport and is
imported only where a live endpoint is configured.
"""

from vaultledger.ledger.registry import AccessRegistry
from vaultledger.ledger.transport import LedgerTransport, LocalLedgerTransport
from vaultledger.ledger.client import LedgerClient

__all__ = ["AccessRegistry", "LedgerClient", "LedgerTransport", "LocalLedgerTransport"]
