"""crossmatrix - Multi-target cross-compilation build orchestrator.

This package builds one native source tree for several hardware/toolchain
profiles in parallel and produces a verified, publishable archive per target.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
