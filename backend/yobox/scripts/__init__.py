"""Process entrypoints, runnable as ``python -m yobox.scripts.<name>``."""
