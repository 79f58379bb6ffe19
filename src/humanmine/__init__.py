from __future__ import annotations

"""humanmine: proof-of-personhood token mining engine."""

__version__ = "0.1.0"
