"""Pure merge/repair engine: no file or network I/O happens below this package."""
