"""certflow - certificate lifecycle and approval-workflow engine.

A storage-agnostic library that governs how certificate requests move
from draft to a final disposition, how issued certificates become
revoked or expired, and how share tokens gate third-party viewing.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
