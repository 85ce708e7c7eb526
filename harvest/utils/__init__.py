"""
Shared utilities: logging, deterministic ids, traffic recording
"""
