"""
                Order Builder

Backend for a restaurant's online ordering and catering site:
a flow-driven product configurator with live pricing, and a
catering order-state service with cancellable drafts, dual
local/remote persistence and cross-device sync.
"""

__version__ = "1.0.0"
