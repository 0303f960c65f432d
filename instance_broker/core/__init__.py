"""
Broker core: installation discovery and selection, process launching,
instance handles, the broker itself, and fault capture.
"""
