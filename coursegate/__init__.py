"""
coursegate

Entitlement & activation core for the chapter-gated course: free/premium
chapter partition, single-use activation codes, dual-store persistence and
the staged activation workflow.
"""

__version__ = "0.1.0"
