"""
Protocol Handlers Package

This package contains the realtime protocol layer:
- Realtime channel abstraction and its socket.io implementation
- Protocol dispatcher mapping commands to session operations
- Error handlers building failure acknowledgements
- socket.io event registration
"""
