"""
Autotrader - multi-user browser-driven binary-option trading

This package places timed trades on a web trading venue for many users at
once, one automated browser context per user, with martingale stake sizing.

Modules:
    core: Event bus, processor base, models, configuration, collaborators
    browser: Shared-browser session pool
    strategy: Martingale staking engine
    execution: Trade placement protocol on the venue page
    processors: Trading orchestrator (signal fan-out, result reconciliation)
    data: Inbound signal/result payload normalisation
    notification: Per-user notification relay
"""

__version__ = "0.1.0"
__author__ = "Autotrader Team"
