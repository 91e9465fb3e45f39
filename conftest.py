"""Puts the repository root on sys.path so ``fitbridge`` and ``server`` import in tests."""
