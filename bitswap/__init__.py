"""Bitswap CIDs, wire format, wantlists, messages, network adapters and a virtual test network."""

__version__ = "0.1.0"