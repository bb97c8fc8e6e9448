"""
Dues Kernel

Shared infrastructure for the dues engine:
- SQLAlchemy declarative base, engine and session scope
- Typed exception hierarchy with stable machine-readable codes
- Structured JSON logging
- Injectable clock
"""

__version__ = "0.1.0"
