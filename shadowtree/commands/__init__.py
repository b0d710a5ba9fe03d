"""
Command implementations for the shadowtree CLI.
"""
