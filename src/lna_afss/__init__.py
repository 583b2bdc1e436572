"""LNA path simulation and adaptive factor slice sampling.

Importing the package enables ``jax_enable_x64`` for the whole process: the
emission densities and the reference integrator evaluate in float64 so their
results agree with the numpy path buffers.
"""

import jax

from .states import *
from .interfaces import *
from .forcing import apply_forcings
from .lna_path import *
from .integrators import LNAOdeSystem
from .census import *
from .measurement import *
from .posterior import *
from .afss import *
from .rw import *
from .runner import run_afss_chain

# no jax arrays are created at import time, so the switch still applies
jax.config.update("jax_enable_x64", True)

__all__ = [name for name in globals() if not name.startswith("_")]
