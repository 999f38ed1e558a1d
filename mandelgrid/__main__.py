"""
Allow running the package directly: python -m mandelgrid
"""
from .app import run

run()
