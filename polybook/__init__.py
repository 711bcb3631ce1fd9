"""
PolyBook - Live order books and fill alerts for Polymarket, in the terminal.

Architecture:
- datafeed/: REST snapshots, the market WebSocket feed, subscriptions, book state
- engine/: Depth computations for the ladder view
- ui/: Markets table + order book ladder (Textual TUI)
"""

__version__ = "0.1.0"
