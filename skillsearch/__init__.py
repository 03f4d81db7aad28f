"""skillsearch — discover, index and search agent skills across git registries."""

__version__ = "0.3.0"
