"""
Optimization routines for maximum likelihood parameter estimation.

- **Parameter blocks**: base frequencies, substitution rates, gamma shape and
  proportion of invariant sites, each fitted with scipy's L-BFGS-B
- **Branch lengths**: one branch at a time with bounded Brent search
- **Coordinate ascent**: cycles over the blocks until the likelihood settles
"""

from nucml.optimize.blocks import (
    BLOCK_ORDER,
    AlphaBlock,
    BlockOptimizer,
    FrequencyBlock,
    ParameterBlock,
    PInvBlock,
    SubstitutionRateBlock,
)
from nucml.optimize.branch import BranchLengthRefiner
from nucml.optimize.optimizer import (
    CoordinateAscentOptimizer,
    OptimizationConfig,
    OptimizationStatus,
    RoundRecord,
)

__all__ = [
    "BLOCK_ORDER",
    "AlphaBlock",
    "BlockOptimizer",
    "BranchLengthRefiner",
    "CoordinateAscentOptimizer",
    "FrequencyBlock",
    "OptimizationConfig",
    "OptimizationStatus",
    "ParameterBlock",
    "PInvBlock",
    "RoundRecord",
    "SubstitutionRateBlock",
]
