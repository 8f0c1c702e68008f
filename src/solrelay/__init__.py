"""solrelay - resilient Solana bundle submission and RPC endpoint failover."""

__version__ = "0.1.0"
