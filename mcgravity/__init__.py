"""McGravity - plan/execute orchestration for AI coding CLIs"""

__version__ = "0.1.0"
