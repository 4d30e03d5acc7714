"""
Graph-Based Browser Automation

Compose a browser workflow as a directed graph of steps and conditionals,
then walk it against a live browser session:
- Typed step vocabulary with dispatch-time validation
- Edit-time graph invariants (single successor, if/else branches)
- Sequential, cancellable execution engine
- Run-scoped variables with {{name}} interpolation
"""

__version__ = "0.1.0"
