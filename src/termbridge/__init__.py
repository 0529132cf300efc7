"""termbridge -- WebSocket bridge between browser terminals and local shells.

Each browser connection gets its own shell running under a pseudo-terminal.
Keystrokes and resize requests flow in, raw shell output flows back out,
and the pairing is torn down exactly once when either side goes away.
"""

__version__ = "0.1.0"
