from __future__ import annotations


__version__ = version = "0.1.0"
__version_tuple__ = version_tuple = (0, 1, 0)
