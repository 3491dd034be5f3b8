"""
Nucleotide substitution models.

- **GTR family**: rate symmetries select JC69, K80, HKY85, TN93, GTR or any
  custom tying of the six exchangeabilities; JC69 and K80 keep equal
  base frequencies
- **Rate heterogeneity**: discrete gamma categories and invariant sites
"""

from nucml.models.gtr import (
    EQUAL_FREQUENCY_MODELS,
    MODEL_SYMMETRIES,
    ModelState,
    build_gtr_Q,
    build_model_symmetries,
    discretize_gamma,
    frequencies_to_ratios,
    has_equal_frequencies,
    ratios_to_frequencies,
    resolve_model,
)

__all__ = [
    "EQUAL_FREQUENCY_MODELS",
    "MODEL_SYMMETRIES",
    "ModelState",
    "build_gtr_Q",
    "build_model_symmetries",
    "discretize_gamma",
    "frequencies_to_ratios",
    "has_equal_frequencies",
    "ratios_to_frequencies",
    "resolve_model",
]
