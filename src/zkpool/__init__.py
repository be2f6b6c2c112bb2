"""Main package initialization."""

__version__ = "0.1.0"
__author__ = "zkpool contributors"
__description__ = "Shielded debt-pool client: private accounts, tree mirror and proof construction"

from .core.account import Account
from .core.merkle_tree import MerkleTree, MerklePath
from .core.tree_mirror import TreeMirror
from .core.operations import Deposit, Withdraw, Mint, Burn, OperationTag, CircuitFamily
from .core.controller import Controller
from .config import PoolSettings, get_settings

__all__ = [
    "Account",
    "MerkleTree",
    "MerklePath",
    "TreeMirror",
    "Deposit",
    "Withdraw",
    "Mint",
    "Burn",
    "OperationTag",
    "CircuitFamily",
    "Controller",
    "PoolSettings",
    "get_settings",
]
