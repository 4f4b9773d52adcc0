"""
Referral network services.

Graph materialization, fast-path aggregation and the breadth-first
verification walk.
"""

from levelnet.services.network.aggregation import AggregationEngine
from levelnet.services.network.downline_walker import DownlineWalker
from levelnet.services.network.locks import KeyedLock, descendant_locks
from levelnet.services.network.materializer import GraphMaterializer


__all__ = [
    "AggregationEngine",
    "DownlineWalker",
    "GraphMaterializer",
    "KeyedLock",
    "descendant_locks",
]
