"""
lmconstraints — target neighbours, impostors and triplets for metric learning
"""
from .adapter import NeighborQueryAdapter, NeighborResult
from .calculators import ImpostorCalculator, TargetNeighborCalculator
from .constraints import Constraints
from .errors import (ConstraintsError, DimensionMismatch, IndexOutOfRange,
                     InsufficientReferencePoints)
from .metrics import Metric, get_metric
from .partition import LabelPartitioner, Partition
from .search import BruteForceSearch, FaissSearch, SearchEngine, TreeSearch, make_engine
from .triplets import TripletGenerator

__all__ = [
    "Constraints",
    "ConstraintsError",
    "DimensionMismatch",
    "IndexOutOfRange",
    "InsufficientReferencePoints",
    "ImpostorCalculator",
    "LabelPartitioner",
    "Metric",
    "NeighborQueryAdapter",
    "NeighborResult",
    "Partition",
    "SearchEngine",
    "BruteForceSearch",
    "TreeSearch",
    "FaissSearch",
    "TargetNeighborCalculator",
    "TripletGenerator",
    "get_metric",
    "make_engine",
]
__version__ = "1.0.0"
