"""
This module holds the command classes for the operator's main entrypoint
"""

# Local
from .run_operator_cmd import RunOperatorCmd
