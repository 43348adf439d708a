"""
Investment Risk Analytics - CAPM beta, discounted cash flows and Monte Carlo risk.

A computation library that turns already-fetched price histories and
economic assumptions into a beta estimate, a deterministic NPV/IRR
valuation and a simulated NPV distribution with Value at Risk and
expected shortfall. It performs no network or storage I/O.
"""

__version__ = "1.0.0"
__author__ = "Taofik Bishi"
