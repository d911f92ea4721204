"""
Utilities Package

Configuration and logging helpers shared across the engine.
"""
