"""
Shared helpers: errors, UI dump parsing, text matching, candidate ranking
"""
