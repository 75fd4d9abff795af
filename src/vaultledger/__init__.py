"""vaultledger — encrypted file custody with a ledger-backed access registry."""

__version__ = "0.4.0"
