"""
Models - domain dataclasses, service payloads and result variants.
"""
