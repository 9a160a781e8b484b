"""Devourer core package.

Modules:
- scanner: per-library scan orchestration and scan-session registry
- monitor: Watchdog-based filesystem watching feeding the scanner
- ratelimit: per-provider request scheduling
- metadata / providers: declarative catalog lookups
- extractor / archive / images: page counts, covers and previews
- database / models / repository: SQLite persistence
- api: FastAPI scan control surface
- config: INI parsing and config object
"""

__version__ = "0.1.0"
