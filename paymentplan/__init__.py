"""Payment plan engine: BNPL and Pawn financing against tokenized collateral."""

__version__ = "0.1.0"
