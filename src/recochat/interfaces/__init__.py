"""
interfaces/ — User-facing front ends (terminal REPL).
"""
