"""Charge point building blocks: transactions, transaction storage, metering, heartbeat and charging profile limits."""

__version__ = "0.1.0"