"""
Allstar agent - scrapes marketplace listings and grades them with an LLM.
"""

__version__ = "0.1.0"
