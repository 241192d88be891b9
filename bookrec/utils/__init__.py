"""
Utilities Package

Helper functions used across the engine:
- identifiers.py: canonical id and ISBN helpers
- book_json.py: provider JSON to BookRecord conversion and payload parsing
"""
