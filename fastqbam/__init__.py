# fastqbam/__init__.py

from fastqbam.version import __version__

__all__ = ["__version__"]
