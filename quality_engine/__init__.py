"""
Automated quality evaluation and refinement for generated educational content.
"""

__version__ = "1.0.0"
