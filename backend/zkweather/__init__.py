"""
Zero-knowledge weather model circuit orchestration
"""
__version__ = "0.1.0"
