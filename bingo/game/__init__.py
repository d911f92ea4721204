"""
Game Engine Package

This package contains the bingo game engine:
- Board presets and card generation
- Win evaluation predicates
- Session state machine and reconnection
- Auto caller timer loop
- Session registry
"""
