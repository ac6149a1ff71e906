"""Integration adapters for external systems (Google Sheets).

Keep these modules small and testable:
- No web framework request/response objects
- No schema or record concerns
- Pure IO + error translation
"""
