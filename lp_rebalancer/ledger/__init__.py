"""
Ledger access: RPC client, signing and the position view.
"""

from lp_rebalancer.ledger.ledger_client import LedgerClient, RpcLedgerClient, SignatureStatus
from lp_rebalancer.ledger.position_view import PositionLedgerView, PositionSnapshot

__all__ = [
    "LedgerClient",
    "RpcLedgerClient",
    "SignatureStatus",
    "PositionLedgerView",
    "PositionSnapshot",
]
