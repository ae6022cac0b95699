"""
Permission management feature module.

Static permission catalog with role defaults, per-user grants with an audit
trail, and method+path route enforcement.
"""
