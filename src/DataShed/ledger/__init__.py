"""Ledger and bundle registry."""

from DataShed.ledger.bundles import BundleRegistry
from DataShed.ledger.ledger import Ledger, read_ledger_file, write_ledger_file

__all__ = ["BundleRegistry", "Ledger", "read_ledger_file", "write_ledger_file"]
