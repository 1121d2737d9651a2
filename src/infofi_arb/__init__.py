"""InfoFi arbitrage engine: raffle bonding curve vs prediction markets."""

__version__ = "0.1.0"
