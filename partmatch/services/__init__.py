"""Services for part normalization, matching, learning and job orchestration."""
