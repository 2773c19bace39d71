"""Services package for the edge filter.

This package provides:
- Static classification by origin country and client identity
- Windowed attack detection counters
- Deduplicated attack notifications
- The admission pipeline that sequences them
"""
